# Overview: Read-only display names for clients and catalog products.

from __future__ import annotations

from ..extensions import db
from ..models import Client, Product, CatalogProduct, Consumables


UNKNOWN_CLIENT = "Cliente desconocido"
UNNAMED_CLIENT = "Sin nombre"
CONSUMABLES_LABEL = "Consumibles"


def client_display_name(client_id: str | None) -> str:
    if not client_id:
        return UNKNOWN_CLIENT
    client = db.session.get(Client, client_id)
    if client is None:
        return UNKNOWN_CLIENT
    return client.razon_social or client.nombre_establecimiento or UNNAMED_CLIENT


def product_display_name(association) -> str | None:
    if isinstance(association, Consumables):
        return CONSUMABLES_LABEL
    if not isinstance(association, CatalogProduct):
        return None
    product = db.session.get(Product, association.product_id)
    if product is None:
        return None
    brand_model = " ".join(p for p in (product.marca, product.modelo) if p)
    return f"{brand_model} - {product.nombre_equipo}" if brand_model else product.nombre_equipo


def describe(opportunity) -> dict:
    """Opportunity payload with client/product names resolved for display."""
    data = opportunity.to_dict()
    data["client_name"] = client_display_name(opportunity.client_id)
    data["product_name"] = product_display_name(opportunity.product_association)
    return data
