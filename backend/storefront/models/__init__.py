from .users import User
from .catalog import Product, InventoryTransaction, Cart, CartItem
from .orders import Order, OrderItem
from .payments import Reservation, Payment, PaymentTarget
from .loyalty import Wallet, WalletTransaction
from .settings import AppSetting, InstallmentConfiguration, InstallmentOption

__all__ = [
    'User',
    'Product', 'InventoryTransaction', 'Cart', 'CartItem',
    'Order', 'OrderItem',
    'Reservation', 'Payment', 'PaymentTarget',
    'Wallet', 'WalletTransaction',
    'AppSetting', 'InstallmentConfiguration', 'InstallmentOption',
]
