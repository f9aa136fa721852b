from __future__ import annotations

from ..extensions import db


class Client(db.Model):
    """
    Customer account an opportunity is raised against.

    Owned by the client-management screens; the opportunity engine only reads it
    to resolve a display name.
    """
    __tablename__ = "clients"

    id = db.Column(db.String(36), primary_key=True)
    razon_social = db.Column(db.String(255), nullable=True)
    nombre_establecimiento = db.Column(db.String(255), nullable=True)
    localidad = db.Column(db.String(128), nullable=True)
    provincia = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class Product(db.Model):
    """Catalog equipment that an opportunity may be about."""
    __tablename__ = "products"

    id = db.Column(db.String(36), primary_key=True)
    nombre_equipo = db.Column(db.String(255), nullable=False)
    marca = db.Column(db.String(128), nullable=True)
    modelo = db.Column(db.String(128), nullable=True)
    rubro = db.Column(db.String(128), nullable=True)
