"""Purchases blueprint: JSON API for purchases and their cost engine."""
from flask import Blueprint, request, jsonify, current_app
from gestion.database import get_session
from gestion.exceptions import ValidationError
from gestion.services.purchase_service import (
    create_purchase, edit_purchase, update_purchase_status, reconcile_product_costs,
    get_purchase_detail, list_purchases
)
from gestion.services.purchase_completion_service import complete_purchase
from gestion.services.purchase_delete_service import delete_purchase_with_reversal
from gestion.services.retry_service import retry_on_conflict

purchases_bp = Blueprint('purchases', __name__, url_prefix='/purchases')


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('El cuerpo de la solicitud debe ser un objeto JSON')
    return data


def _int_arg(name, default=None):
    value = request.args.get(name)
    if value in (None, ''):
        return default
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f'Parámetro {name} inválido: {value}', field=name)


@purchases_bp.route('/', methods=['GET'])
def list_purchases_view():
    """List purchases with pagination and filters."""
    session = get_session()
    result = list_purchases(
        session,
        page=_int_arg('page', 1),
        limit=_int_arg('limit', current_app.config.get('PURCHASES_PAGE_SIZE', 10)),
        status=request.args.get('status') or None,
        type_=request.args.get('type') or None,
        supplier_id=_int_arg('supplier_id') or _int_arg('supplierId'),
        search=(request.args.get('q') or request.args.get('search') or '').strip() or None
    )
    return jsonify(result)


@purchases_bp.route('/', methods=['POST'])
def create_purchase_view():
    """Create a purchase in PENDING status."""
    session = get_session()
    result = create_purchase(_json_body(), session)
    current_app.logger.info(f"Purchase {result['purchase_number']} created via API")
    return jsonify({
        'status': 'success',
        'message': result['message'],
        'purchase': get_purchase_detail(result['purchase_id'], session)
    }), 201


@purchases_bp.route('/<int:purchase_id>', methods=['GET'])
def view_purchase(purchase_id):
    """Purchase detail with items and cost breakdown."""
    session = get_session()
    return jsonify(get_purchase_detail(purchase_id, session))


@purchases_bp.route('/<int:purchase_id>/edit', methods=['PUT'])
def edit_purchase_view(purchase_id):
    """Edit header and items; recomputes distributed costs."""
    session = get_session()
    result = edit_purchase(purchase_id, _json_body(), session)
    return jsonify({
        'status': 'success',
        'message': result['message'],
        'purchase': get_purchase_detail(purchase_id, session)
    })


@purchases_bp.route('/<int:purchase_id>', methods=['PATCH'])
def update_purchase_view(purchase_id):
    """Update status and/or notes. Moving to COMPLETED applies stock and costs."""
    session = get_session()
    data = _json_body()
    if 'status' not in data and 'notes' not in data:
        raise ValidationError('Debe indicar status o notes', field='status')

    result = retry_on_conflict(
        update_purchase_status, purchase_id, data.get('status'), session, notes=data.get('notes')
    )
    return jsonify({
        'status': 'success',
        'message': result['message'],
        'purchase': get_purchase_detail(purchase_id, session)
    })


@purchases_bp.route('/<int:purchase_id>/complete', methods=['POST'])
def complete_purchase_view(purchase_id):
    """Complete a purchase: stock intake, product cost and movement ledger."""
    session = get_session()
    result = retry_on_conflict(complete_purchase, purchase_id, session)
    return jsonify({
        'status': 'success',
        'message': result['message'],
        'updated_products': result['updated_products'],
        'purchase': get_purchase_detail(purchase_id, session)
    })


@purchases_bp.route('/<int:purchase_id>', methods=['DELETE'])
def delete_purchase_view(purchase_id):
    """Delete a purchase, reversing stock and cost when it was completed."""
    session = get_session()
    result = retry_on_conflict(delete_purchase_with_reversal, purchase_id, session)
    current_app.logger.info(f"Purchase {result['purchase_number']} deleted via API")
    return jsonify({'status': 'success', **result})


@purchases_bp.route('/<int:purchase_id>/reconcile-costs', methods=['POST'])
def reconcile_costs_view(purchase_id):
    """Recompute product costs of a completed purchase."""
    session = get_session()
    result = retry_on_conflict(reconcile_product_costs, purchase_id, session)
    return jsonify({'status': 'success', **result})
