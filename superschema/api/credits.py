"""Credit balance, packs and ledger endpoints."""
from flask import Blueprint, g

from ..auth import require_admin, require_auth
from . import ok, parse_body, parse_query, services
from .payloads import GrantCreditsRequest, Pagination

credits_bp = Blueprint("credits", __name__)


@credits_bp.route("/balance", methods=["GET"])
@require_auth
def balance():
	"""Balance of whoever pays for this user's generations (the team owner on a team)."""
	svc = services()
	with svc.db.get_session() as session:
		payer = svc.credits.payer_id(session, g.user_id)
	return ok({"credit_balance": svc.credits.get_balance(g.user_id), "paid_by": payer})


@credits_bp.route("/packs", methods=["GET"])
def packs():
	return ok(services().credits.list_packs())


@credits_bp.route("/packs/<pack_id>", methods=["GET"])
def pack(pack_id: str):
	return ok(services().credits.get_pack(pack_id))


@credits_bp.route("/transactions", methods=["GET"])
@require_auth
def transactions():
	query = parse_query(Pagination)
	return ok(services().credits.transactions(g.user_id, query.page, query.limit))


@credits_bp.route("/grant", methods=["POST"])
@require_admin
def grant():
	body = parse_body(GrantCreditsRequest)
	new_balance = services().credits.add_credits(body.user_id, body.amount, body.description, type=body.type)
	return ok({"user_id": body.user_id, "credit_balance": new_balance}, f"Added {body.amount} credits")
