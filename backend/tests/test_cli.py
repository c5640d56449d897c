from datetime import timedelta

from storefront.extensions import db
from storefront.models import InstallmentOption, Reservation
from storefront.services import installment_service, settings_service

from conftest import start_checkout


def test_sweep_dry_run_then_real(app, fake_gateway, user, products, cart):
    started = start_checkout(user.id)
    reservation = db.session.get(Reservation, started.reservation_id)
    reservation.expires_at = reservation.created_at - timedelta(minutes=1)
    db.session.commit()
    runner = app.test_cli_runner()

    result = runner.invoke(args=["reservations", "sweep", "--dry-run"])
    assert result.exit_code == 0
    assert "DRY RUN Expired 1 reservation(s), cancelled 1 payment(s)." in result.output

    result = runner.invoke(args=["reservations", "sweep"])
    assert result.exit_code == 0
    assert started.reservation_id in result.output

    db.session.expire_all()
    assert db.session.get(Reservation, started.reservation_id) is None


def test_loyalty_commands(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["loyalty", "set-percentage", "2.5"])
    assert result.exit_code == 0
    assert "2.50%" in result.output

    db.session.expire_all()
    assert str(settings_service.get_bonus_percentage()) == "2.50"

    result = runner.invoke(args=["loyalty", "set-percentage", "250"])
    assert result.exit_code != 0


def test_installment_commands(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["installments", "configure", "--enabled", "--minimum", "150.00"])
    assert result.exit_code == 0
    assert "enabled, minimum 150.00" in result.output

    result = runner.invoke(args=["installments", "add-option", "--bank", "ABB", "--period", "6", "--interest", "3"])
    assert result.exit_code == 0

    result = runner.invoke(args=["installments", "list"])
    assert "ABB" in result.output

    db.session.expire_all()
    assert installment_service.get_configuration().minimum_amount_cents == 15000
    assert db.session.query(InstallmentOption).count() == 1


def test_system_init_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["system", "init"])
    second = runner.invoke(args=["system", "init"])

    assert first.exit_code == 0
    assert "Default settings created: 1" in first.output
    assert "Default settings created: 0" in second.output
