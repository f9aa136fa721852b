from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Union

from ..extensions import db
from crm.services.state_machine import ORDERED_STATES, INITIAL_STATE, state_label, is_terminal
from crm.time_utils import to_utc_z


PRODUCT_KIND_CATALOG = "catalogo"
PRODUCT_KIND_CONSUMABLES = "consumibles"


@dataclass(frozen=True)
class CatalogProduct:
    product_id: str


@dataclass(frozen=True)
class Consumables:
    pass


# None means "no product"
ProductAssociation = Union[None, CatalogProduct, Consumables]


def _states_sql() -> str:
    return ", ".join(f"'{s}'" for s in ORDERED_STATES)


def new_opportunity_id() -> str:
    return uuid.uuid4().hex


class Opportunity(db.Model):
    """
    Sales lead against exactly one client.

    LIFECYCLE: state moves only through services.lifecycle_service; every
    accepted move is mirrored by exactly one OpportunityTransition row.

    BOOKKEEPING:
    - state_seq counts accepted state changes; the creation event is seq 0.
      The transition row for change N carries seq N, which makes retried
      audit writes idempotent through uq_opportunity_transitions_seq.
    - pending_transitions lists state changes whose audit row is not written
      yet. An entry lives between the state commit and the audit-row commit;
      rows that keep one are picked up by history_service.reconcile_pending.
    """
    __tablename__ = "opportunities"
    __table_args__ = (
        db.CheckConstraint(f"state IN ({_states_sql()})", name="ck_opportunities_state"),
        db.CheckConstraint(
            "(product_kind IS NULL AND product_id IS NULL)"
            f" OR (product_kind = '{PRODUCT_KIND_CONSUMABLES}' AND product_id IS NULL)"
            f" OR (product_kind = '{PRODUCT_KIND_CATALOG}' AND product_id IS NOT NULL)",
            name="ck_opportunities_product_association",
        ),
        db.CheckConstraint("estimated_value IS NULL OR estimated_value >= 0", name="ck_opportunities_value"),
        db.Index("ix_opportunities_owner_created", "created_by", "created_at"),
        db.Index("ix_opportunities_state", "state"),
    )

    id = db.Column(db.String(32), primary_key=True, default=new_opportunity_id)
    client_id = db.Column(db.String(36), db.ForeignKey("clients.id"), nullable=False, index=True)

    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    state = db.Column(db.String(32), nullable=False, default=INITIAL_STATE)

    product_kind = db.Column(db.String(16), nullable=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=True)

    estimated_value = db.Column(db.Numeric(12, 2), nullable=True)
    expected_close_date = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    state_seq = db.Column(db.Integer, nullable=False, default=0)
    pending_transitions = db.Column(db.JSON(none_as_null=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    client = db.relationship("Client", lazy="joined")
    product = db.relationship("Product", lazy="joined")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def product_association(self) -> ProductAssociation:
        if self.product_kind == PRODUCT_KIND_CATALOG:
            return CatalogProduct(self.product_id)
        if self.product_kind == PRODUCT_KIND_CONSUMABLES:
            return Consumables()
        return None

    @product_association.setter
    def product_association(self, value: ProductAssociation) -> None:
        if isinstance(value, CatalogProduct):
            self.product_kind = PRODUCT_KIND_CATALOG
            self.product_id = value.product_id
        elif isinstance(value, Consumables):
            self.product_kind = PRODUCT_KIND_CONSUMABLES
            self.product_id = None
        elif value is None:
            self.product_kind = None
            self.product_id = None
        else:
            raise TypeError(f"Unsupported product association: {value!r}")

    @property
    def is_closed(self) -> bool:
        return is_terminal(self.state)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "title": self.title,
            "description": self.description,
            "state": self.state,
            "state_label": state_label(self.state),
            "is_closed": self.is_closed,
            "product_kind": self.product_kind,
            "product_id": self.product_id,
            "estimated_value": str(self.estimated_value) if self.estimated_value is not None else None,
            "expected_close_date": self.expected_close_date.isoformat() if self.expected_close_date else None,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "history_pending": bool(self.pending_transitions),
        }


class OpportunityTransition(db.Model):
    """
    One state change of an opportunity (or its creation, from_state NULL).

    IMMUTABLE: Append-only. Rows disappear only together with their
    opportunity.
    """
    __tablename__ = "opportunity_transitions"
    __table_args__ = (
        db.UniqueConstraint("opportunity_id", "seq", name="uq_opportunity_transitions_seq"),
        db.Index("ix_opportunity_transitions_opp_created", "opportunity_id", "created_at"),
        db.CheckConstraint(
            f"from_state IS NULL OR from_state IN ({_states_sql()})",
            name="ck_opportunity_transitions_from",
        ),
        db.CheckConstraint(f"to_state IN ({_states_sql()})", name="ck_opportunity_transitions_to"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    opportunity_id = db.Column(
        db.String(32),
        db.ForeignKey("opportunities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    seq = db.Column(db.Integer, nullable=False)

    from_state = db.Column(db.String(32), nullable=True)
    to_state = db.Column(db.String(32), nullable=False)
    comment = db.Column(db.Text, nullable=True)

    changed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    changed_by_user = db.relationship("User", lazy="joined")

    @property
    def is_creation(self) -> bool:
        return self.from_state is None

    def to_dict(self) -> dict:
        user = self.changed_by_user
        return {
            "id": self.id,
            "opportunity_id": self.opportunity_id,
            "seq": self.seq,
            "from_state": self.from_state,
            "to_state": self.to_state,
            "to_state_label": state_label(self.to_state),
            "comment": self.comment,
            "changed_by": self.changed_by,
            "changed_by_name": (user.full_name or user.email) if user else None,
            "created_at": to_utc_z(self.created_at),
        }
