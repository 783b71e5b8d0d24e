"""Products blueprint: read-only stock and cost view."""
from flask import Blueprint, request, jsonify
from gestion.database import get_session
from gestion.exceptions import NotFoundError, ValidationError
from gestion.models import Product, StockMovement

products_bp = Blueprint('products', __name__, url_prefix='/products')


def _money(value):
    return f'{value:.2f}' if value is not None else None


@products_bp.route('/<int:product_id>', methods=['GET'])
def view_product(product_id):
    """Product stock, landed cost and its stock movement ledger (newest first)."""
    session = get_session()

    product = session.get(Product, product_id)
    if not product:
        raise NotFoundError(f'Producto #{product_id} no encontrado')

    try:
        limit = int(request.args.get('movements', 50))
    except ValueError:
        raise ValidationError('Parámetro movements inválido', field='movements')
    if limit < 1:
        raise ValidationError('Parámetro movements debe ser mayor a 0', field='movements')

    movements = session.query(StockMovement).filter(
        StockMovement.product_id == product_id
    ).order_by(StockMovement.id.desc()).limit(limit).all()

    return jsonify({
        'id': product.id,
        'sku': product.sku,
        'name': product.name,
        'active': product.active,
        'stock': product.stock,
        'cost': _money(product.cost),
        'wholesale_price': _money(product.wholesale_price),
        'retail_price': _money(product.retail_price),
        'movements': [
            {
                'id': m.id,
                'type': m.type.value,
                'quantity': m.quantity,
                'reason': m.reason,
                'reference': m.reference,
                'created_at': m.created_at.isoformat() if m.created_at else None
            }
            for m in movements
        ]
    })
