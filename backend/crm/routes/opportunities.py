# backend/crm/routes/opportunities.py
"""
Opportunity API Routes

- POST   /api/opportunities                 create (owner = caller)
- GET    /api/opportunities                 list (admin: all, user: own; ?state=)
- GET    /api/opportunities/states          state catalogue with labels
- GET    /api/opportunities/<id>            read, with duration summary
- PATCH  /api/opportunities/<id>            edit descriptive fields
- POST   /api/opportunities/<id>/state      change state {"state", "comment"}
- DELETE /api/opportunities/<id>            delete (idempotent)
- GET    /api/opportunities/<id>/history    audit trail (?order=asc|desc)
- GET    /api/opportunities/<id>/summary    days open / days to close
- POST   /api/opportunities/reconcile       admin: replay pending audit rows

SECURITY:
- All routes require authentication
- Caller identity and role come from the session (g.actor), NOT from the
  request body. created_by and changed_by cannot be spoofed.
- 403 responses are generic and identical for "not yours" and "does not
  exist" (non-admin callers).
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services.lifecycle_service import OpportunityLifecycle
from ..services.authorization import PermissionDenied
from ..services import history_service
from ..services.opportunity_store import NotFound, OpportunityStore
from ..services.state_machine import LifecycleError, catalogue
from ..services.lookup_service import describe
from ..validation import ValidationError
from ..decorators import require_auth, require_admin


opportunities_bp = Blueprint("opportunities", __name__, url_prefix="/api/opportunities")

DOMAIN_ERRORS = (ValidationError, PermissionDenied, NotFound, LifecycleError)


def _lifecycle() -> OpportunityLifecycle:
    return OpportunityLifecycle.from_config(current_app.config)


def _domain_error(e: Exception):
    if isinstance(e, ValidationError):
        return jsonify(e.to_dict()), 400
    if isinstance(e, PermissionDenied):
        return jsonify({"error": "Not authorized"}), 403
    if isinstance(e, NotFound):
        return jsonify({"error": "Opportunity not found"}), 404
    # InvalidTransition / NoOpRejected
    return jsonify({"error": str(e)}), 400


@opportunities_bp.get("/states")
@require_auth
def list_states_route():
    return jsonify({"states": catalogue()}), 200


@opportunities_bp.post("")
@require_auth
def create_opportunity_route():
    """
    Create an opportunity. State is always 'nueva'; created_by is the caller.

    Body: {client_id, title, description, product_id?, consumables?,
           estimated_value?, expected_close_date?, notes?}
    """
    try:
        opportunity = _lifecycle().create(request.get_json(silent=True), g.actor.user_id)
        return jsonify({"opportunity": describe(opportunity)}), 201
    except DOMAIN_ERRORS as e:
        return _domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to create opportunity")
        return jsonify({"error": "Internal server error"}), 500


@opportunities_bp.get("")
@require_auth
def list_opportunities_route():
    try:
        state = request.args.get("state") or None
        items = _lifecycle().list_for(g.actor.user_id, g.actor.role, state=state)
        return jsonify({"opportunities": [describe(o) for o in items]}), 200
    except DOMAIN_ERRORS as e:
        return _domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to list opportunities")
        return jsonify({"error": "Internal server error"}), 500


@opportunities_bp.get("/<opportunity_id>")
@require_auth
def get_opportunity_route(opportunity_id: str):
    try:
        lifecycle = _lifecycle()
        opportunity = lifecycle.get(opportunity_id, g.actor.user_id, g.actor.role)
        summary = lifecycle.summary(opportunity_id, g.actor.user_id, g.actor.role)
        return jsonify({
            "opportunity": describe(opportunity),
            "summary": summary.to_dict(),
        }), 200
    except DOMAIN_ERRORS as e:
        return _domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to load opportunity")
        return jsonify({"error": "Internal server error"}), 500


@opportunities_bp.patch("/<opportunity_id>")
@require_auth
def edit_opportunity_route(opportunity_id: str):
    """Edit descriptive fields. Does not add a history entry."""
    try:
        opportunity = _lifecycle().edit(
            opportunity_id,
            g.actor.user_id,
            g.actor.role,
            request.get_json(silent=True),
        )
        return jsonify({"opportunity": describe(opportunity)}), 200
    except DOMAIN_ERRORS as e:
        return _domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to edit opportunity")
        return jsonify({"error": "Internal server error"}), 500


@opportunities_bp.post("/<opportunity_id>/state")
@require_auth
def change_state_route(opportunity_id: str):
    """
    Change state.

    Body: {"state": "en_seguimiento", "comment": "optional"}

    Response:
        {
            "opportunity": {...},
            "history": [...],          // ascending
            "history_recorded": true   // false: state saved, audit row pending
        }
    """
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON payload"}), 400

    try:
        result = _lifecycle().change_state(
            opportunity_id,
            g.actor.user_id,
            g.actor.role,
            payload.get("state"),
            payload.get("comment"),
        )
        body = result.to_dict()
        body["opportunity"] = describe(result.opportunity)
        return jsonify(body), 200
    except DOMAIN_ERRORS as e:
        return _domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to change opportunity state")
        return jsonify({"error": "Internal server error"}), 500


@opportunities_bp.delete("/<opportunity_id>")
@require_auth
def delete_opportunity_route(opportunity_id: str):
    try:
        deleted = _lifecycle().delete(opportunity_id, g.actor.user_id, g.actor.role)
        return jsonify({"deleted": deleted}), 200
    except DOMAIN_ERRORS as e:
        return _domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to delete opportunity")
        return jsonify({"error": "Internal server error"}), 500


@opportunities_bp.get("/<opportunity_id>/history")
@require_auth
def history_route(opportunity_id: str):
    order = request.args.get("order", "asc")
    if order not in ("asc", "desc"):
        return jsonify({"error": "order must be 'asc' or 'desc'"}), 400

    try:
        history = _lifecycle().history(opportunity_id, g.actor.user_id, g.actor.role, order=order)
        return jsonify({"history": [t.to_dict() for t in history]}), 200
    except DOMAIN_ERRORS as e:
        return _domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to load opportunity history")
        return jsonify({"error": "Internal server error"}), 500


@opportunities_bp.get("/<opportunity_id>/summary")
@require_auth
def summary_route(opportunity_id: str):
    try:
        summary = _lifecycle().summary(opportunity_id, g.actor.user_id, g.actor.role)
        return jsonify({"summary": summary.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return _domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to summarize opportunity")
        return jsonify({"error": "Internal server error"}), 500


@opportunities_bp.post("/reconcile")
@require_auth
@require_admin
def reconcile_history_route():
    """Admin: write audit rows left pending by failed history writes."""
    try:
        report = history_service.reconcile_pending(
            OpportunityStore(),
            attempts=current_app.config.get("HISTORY_WRITE_ATTEMPTS", 3),
            backoff_base=current_app.config.get("HISTORY_RETRY_BACKOFF", 0.1),
        )
        status = 200 if not report.failed else 503
        return jsonify(report.to_dict()), status
    except Exception:
        current_app.logger.exception("Failed to reconcile opportunity history")
        return jsonify({"error": "Internal server error"}), 500
