from .tenancy import Tenant, Site
from .catalog import Category, Product
from .stock import StockBatch, StockMovement
from .sales import Sale, SaleItem
from .loyalty import RoyaltyConfig, RoyaltyAccount, RoyaltyPointTransaction, RoyaltyReward, RoyaltyRedemption
from .tax import SiteTaxConfig
from .documents import DocumentSequence

__all__ = [
    'Tenant', 'Site',
    'Category', 'Product',
    'StockBatch', 'StockMovement',
    'Sale', 'SaleItem',
    'RoyaltyConfig', 'RoyaltyAccount', 'RoyaltyPointTransaction', 'RoyaltyReward', 'RoyaltyRedemption',
    'SiteTaxConfig',
    'DocumentSequence',
]
