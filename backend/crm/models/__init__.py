from .auth import User, SessionToken, ROLE_ADMIN, ROLE_USER, VALID_ROLES
from .catalog import Client, Product
from .opportunities import (
    Opportunity,
    OpportunityTransition,
    CatalogProduct,
    Consumables,
    ProductAssociation,
    PRODUCT_KIND_CATALOG,
    PRODUCT_KIND_CONSUMABLES,
)

__all__ = [
    'User', 'SessionToken', 'ROLE_ADMIN', 'ROLE_USER', 'VALID_ROLES',
    'Client', 'Product',
    'Opportunity', 'OpportunityTransition',
    'CatalogProduct', 'Consumables', 'ProductAssociation',
    'PRODUCT_KIND_CATALOG', 'PRODUCT_KIND_CONSUMABLES',
]
