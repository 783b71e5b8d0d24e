"""
Purchase service with transactional logic.
Handles purchase creation, edits, status changes, cost reconciliation and
the JSON views used by the purchases blueprint.
"""
import logging
import math
import re
from decimal import Decimal
from typing import List, Optional
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, OperationalError
from gestion.database import apply_statement_timeout
from gestion.exceptions import (
    GestionError, ValidationError, StateError, ReferenceNotFoundError, NotFoundError, ConcurrencyError
)
from gestion.models import (
    Purchase, PurchaseItem, PurchaseStatus, PurchaseType, Product, Supplier,
    EDITABLE_STATUSES, PROTECTED_STATUSES
)
from gestion.services.cost_distribution import (
    OVERHEAD_CATEGORIES, apply_purchase_costs, overhead_money, round_money
)
from gestion.services.currency import get_local_currency
from gestion.services.product_cost_service import recalculate_product_cost, get_cost_policy
from gestion.services.purchase_completion_service import complete_purchase
from gestion.services.purchase_payload import (
    ItemCreate, ItemDelete,
    parse_purchase_header, parse_create_items, parse_edit_items, check_exchange_rate
)
from gestion.blueprints.metrics import purchases_created_total, purchase_conflicts_total

logger = logging.getLogger(__name__)

PURCHASE_NUMBER_PATTERN = re.compile(r'^PC-(\d+)$')
PURCHASE_NUMBER_ATTEMPTS = 3

HEADER_FIELDS = (
    'supplier_id', 'type', 'currency', 'exchange_rate', 'exchange_type',
    'order_date', 'expected_date', 'notes'
)
ITEM_FIELDS = (
    'product_id', 'quantity', 'unit_price_local', 'unit_price_foreign',
    'wholesale_price', 'retail_price'
)


def _conflict(operation: str, purchase_ref, error: OperationalError) -> ConcurrencyError:
    purchase_conflicts_total.labels(operation=operation).inc()
    logger.warning(f"Purchase {purchase_ref} {operation} aborted: {error.orig}")
    return ConcurrencyError(
        f'Conflicto al procesar la compra {purchase_ref}: intente nuevamente'
    )


def _get_purchase_for_update(session, purchase_id: int) -> Purchase:
    purchase = session.query(Purchase).filter(
        Purchase.id == purchase_id
    ).with_for_update().first()
    if not purchase:
        raise NotFoundError(f'Compra #{purchase_id} no encontrada')
    return purchase


def _require_supplier(session, supplier_id: int) -> Supplier:
    supplier = session.get(Supplier, supplier_id)
    if not supplier:
        raise ReferenceNotFoundError(
            f'Proveedor con ID {supplier_id} no encontrado',
            entity='supplier', entity_id=supplier_id
        )
    return supplier


def _require_products(session, product_ids) -> None:
    product_ids = set(product_ids)
    if not product_ids:
        return
    found = {
        row.id for row in session.query(Product.id).filter(Product.id.in_(product_ids)).all()
    }
    missing = sorted(product_ids - found)
    if missing:
        raise ReferenceNotFoundError(
            f'Producto con ID {missing[0]} no encontrado',
            entity='product', entity_id=missing[0]
        )


def _apply_header(purchase: Purchase, header: dict) -> None:
    for field in HEADER_FIELDS:
        if field in header:
            setattr(purchase, field, header[field])

    costs = header.get('costs') or {}
    for key, amount_attr, currency_attr in OVERHEAD_CATEGORIES:
        if key in costs:
            setattr(purchase, amount_attr, round_money(costs[key].amount))
            setattr(purchase, currency_attr, costs[key].currency)


def _build_item(item: ItemCreate) -> PurchaseItem:
    return PurchaseItem(
        product_id=item.product_id,
        quantity=item.quantity,
        unit_price_local=round_money(item.unit_price_local),
        unit_price_foreign=item.unit_price_foreign,
        wholesale_price=item.wholesale_price,
        retail_price=item.retail_price
    )


def next_purchase_number(session) -> str:
    """Next sequential purchase number (PC-000001, PC-000002, ...)."""
    numbers = session.query(Purchase.purchase_number).filter(
        Purchase.purchase_number.like('PC-%')
    ).all()

    last = 0
    for (number,) in numbers:
        match = PURCHASE_NUMBER_PATTERN.match(number or '')
        if match:
            last = max(last, int(match.group(1)))
    return f'PC-{last + 1:06d}'


def create_purchase(payload: dict, session) -> dict:
    """
    Create a purchase in PENDING status.

    Validates supplier and products, computes totals and distributed item
    costs and assigns the next purchase number. Creation has no stock or
    product cost effects; those happen when the purchase is completed.

    Returns:
        dict with purchase_id and purchase_number

    Raises:
        ValidationError: malformed payload
        ReferenceNotFoundError: supplier or product does not exist
        ConcurrencyError: purchase number collisions kept happening
    """
    local_currency = get_local_currency()
    header = parse_purchase_header(payload, local_currency)
    items = parse_create_items(payload.get('items'), header['exchange_rate'])
    check_exchange_rate(header['costs'], header['exchange_rate'], local_currency)

    try:
        apply_statement_timeout(session)
        _require_supplier(session, header['supplier_id'])
        _require_products(session, [item.product_id for item in items])

        for attempt in range(1, PURCHASE_NUMBER_ATTEMPTS + 1):
            purchase = Purchase(status=PurchaseStatus.PENDING)
            _apply_header(purchase, header)
            purchase.items = [_build_item(item) for item in items]
            apply_purchase_costs(purchase, local_currency)
            purchase.purchase_number = next_purchase_number(session)

            session.add(purchase)
            try:
                session.commit()
                break
            except IntegrityError:
                # Another request took the same number
                session.rollback()
                logger.warning(
                    f"Purchase number {purchase.purchase_number} already taken "
                    f"(attempt {attempt}/{PURCHASE_NUMBER_ATTEMPTS})"
                )
                if attempt == PURCHASE_NUMBER_ATTEMPTS:
                    raise ConcurrencyError('No se pudo generar un número de compra único, intente nuevamente')

        purchases_created_total.labels(type=purchase.type.value).inc()
        logger.info(
            f"Purchase {purchase.purchase_number} created: {len(items)} items, total {purchase.total}"
        )
        return {
            'success': True,
            'message': f'Compra {purchase.purchase_number} creada correctamente',
            'purchase_id': purchase.id,
            'purchase_number': purchase.purchase_number
        }

    except GestionError:
        session.rollback()
        raise

    except OperationalError as e:
        session.rollback()
        raise _conflict('create', 'nueva', e)

    except Exception:
        session.rollback()
        raise


def _plan_item_changes(purchase: Purchase, operations) -> tuple:
    """
    Resolve edit operations against the stored items.

    Existing items not mentioned by the payload are deleted.

    Returns:
        (updates, creates, deletes) where updates is a list of
        (PurchaseItem, ItemUpdate) and deletes a list of PurchaseItem
    """
    existing = {item.id: item for item in purchase.items}
    updates, creates, deleted_ids = [], [], set()
    seen = set()

    for op in operations:
        if isinstance(op, ItemCreate):
            creates.append(op)
            continue

        if op.id not in existing:
            raise ValidationError(
                f'El item #{op.id} no pertenece a la compra {purchase.purchase_number}',
                field='items'
            )
        if op.id in seen:
            raise ValidationError(f'El item #{op.id} aparece más de una vez', field='items')
        seen.add(op.id)

        if isinstance(op, ItemDelete):
            deleted_ids.add(op.id)
        else:
            updates.append((existing[op.id], op))

    deleted_ids |= set(existing) - seen
    deletes = [existing[item_id] for item_id in existing if item_id in deleted_ids]

    if not updates and not creates:
        raise ValidationError('Debe incluir al menos un producto en la compra', field='items')

    return updates, creates, deletes


def _changes_quantities(updates, creates, deletes) -> bool:
    if creates or deletes:
        return True
    for item, op in updates:
        if op.product_id is not None and op.product_id != item.product_id:
            return True
        if op.quantity is not None and op.quantity != item.quantity:
            return True
    return False


def edit_purchase(purchase_id: int, payload: dict, session) -> dict:
    """
    Edit a purchase's header and items and recompute its costs.

    Steps:
    1. Lock the purchase; RECEIVED / IN_TRANSIT purchases are rejected
    2. Parse header changes and item operations (create / update / delete)
    3. Validate item ownership, referenced products and exchange rate
    4. COMPLETED purchases only accept corrections that keep items and
       quantities; stock and product cost are left untouched
    5. Apply changes, recompute totals and distributed costs
    6. Commit transaction

    Returns:
        dict with purchase_id, purchase_number and the applied operations

    Raises:
        NotFoundError: purchase does not exist
        StateError: status does not allow the edit
        ValidationError: malformed payload or foreign item id
        ReferenceNotFoundError: supplier or product does not exist
        ConcurrencyError: timeout or lock conflict (transaction rolled back)
    """
    try:
        apply_statement_timeout(session)

        # Step 1: Lock purchase and check status
        purchase = _get_purchase_for_update(session, purchase_id)
        allowed = list(EDITABLE_STATUSES) + [PurchaseStatus.COMPLETED]
        if purchase.status in PROTECTED_STATUSES:
            raise StateError(
                f'No se puede editar la compra {purchase.purchase_number} '
                f'en estado {purchase.status.value}',
                current_status=purchase.status,
                allowed_statuses=allowed
            )

        # Step 2: Parse payload
        local_currency = get_local_currency()
        header = parse_purchase_header(payload, local_currency, current=purchase)
        exchange_rate = header['exchange_rate'] if 'exchange_rate' in header else purchase.exchange_rate

        operations = None
        if 'items' in payload:
            operations = parse_edit_items(payload['items'], exchange_rate)

        # Step 3: Validate references
        costs = overhead_money(purchase)
        costs.update(header['costs'])
        check_exchange_rate(costs, exchange_rate, local_currency)

        if 'supplier_id' in header:
            _require_supplier(session, header['supplier_id'])

        updates, creates, deletes = [], [], []
        if operations is not None:
            updates, creates, deletes = _plan_item_changes(purchase, operations)
            _require_products(session, [op.product_id for op in creates] +
                              [op.product_id for _, op in updates if op.product_id is not None])

        # Step 4: Completed purchases are corrections only
        if purchase.status == PurchaseStatus.COMPLETED and _changes_quantities(updates, creates, deletes):
            raise StateError(
                f'La compra {purchase.purchase_number} está completada: '
                f'solo se pueden corregir precios, costos y tipo de cambio',
                current_status=purchase.status,
                allowed_statuses=list(EDITABLE_STATUSES)
            )

        # Step 5: Apply changes
        _apply_header(purchase, header)

        for item, op in updates:
            for field in ITEM_FIELDS:
                value = getattr(op, field)
                if value is None:
                    continue
                if field == 'unit_price_local':
                    value = round_money(value)
                setattr(item, field, value)

        for item in deletes:
            purchase.items.remove(item)

        for op in creates:
            purchase.items.append(_build_item(op))

        apply_purchase_costs(purchase, local_currency)
        purchase_number = purchase.purchase_number
        was_completed = purchase.status == PurchaseStatus.COMPLETED

        # Step 6: Commit transaction
        session.commit()

        logger.info(
            f"Purchase {purchase_number} edited: {len(updates)} updated, "
            f"{len(creates)} created, {len(deletes)} deleted"
        )
        if was_completed:
            logger.info(f"Purchase {purchase_number} is completed; product costs left for reconciliation")

        return {
            'success': True,
            'message': f'Compra {purchase_number} actualizada correctamente',
            'purchase_id': purchase_id,
            'purchase_number': purchase_number,
            'items_updated': len(updates),
            'items_created': len(creates),
            'items_deleted': len(deletes)
        }

    except GestionError:
        session.rollback()
        raise

    except OperationalError as e:
        session.rollback()
        raise _conflict('edit', f'#{purchase_id}', e)

    except Exception:
        session.rollback()
        raise


def parse_status(value) -> PurchaseStatus:
    try:
        return PurchaseStatus(str(value).upper())
    except ValueError:
        raise ValidationError(f'Estado de compra inválido: {value}', field='status')


def update_purchase_status(purchase_id: int, status, session, notes: Optional[str] = None) -> dict:
    """
    Change a purchase's status (and optionally its notes).

    Moving into COMPLETED runs the completion processor; a completed
    purchase cannot move back to another status.

    Raises:
        NotFoundError: purchase does not exist
        StateError: purchase is already completed
        ValidationError: unknown status
    """
    new_status = parse_status(status) if status is not None else None

    try:
        apply_statement_timeout(session)
        purchase = _get_purchase_for_update(session, purchase_id)

        if new_status is not None and purchase.status == PurchaseStatus.COMPLETED \
                and new_status != PurchaseStatus.COMPLETED:
            raise StateError(
                f'La compra {purchase.purchase_number} ya está completada y no puede cambiar de estado',
                current_status=purchase.status,
                allowed_statuses=[s for s in PurchaseStatus if s != PurchaseStatus.COMPLETED]
            )

        if notes is not None:
            purchase.notes = notes

        if new_status == PurchaseStatus.COMPLETED:
            # Completion commits the pending notes along with the stock intake
            return complete_purchase(purchase_id, session)

        old_status = purchase.status
        if new_status is not None:
            purchase.status = new_status
        purchase_number = purchase.purchase_number
        session.commit()

        if new_status is not None and new_status != old_status:
            logger.info(f"Purchase {purchase_number} status {old_status.value} -> {new_status.value}")

        return {
            'success': True,
            'message': f'Compra {purchase_number} actualizada correctamente',
            'purchase_id': purchase_id,
            'purchase_number': purchase_number,
            'status': (new_status or old_status).value
        }

    except GestionError:
        session.rollback()
        raise

    except OperationalError as e:
        session.rollback()
        raise _conflict('status', f'#{purchase_id}', e)

    except Exception:
        session.rollback()
        raise


def reconcile_product_costs(purchase_id: int, session) -> dict:
    """
    Recompute the cost of every product in a completed purchase.

    Used after cost-only corrections of a completed purchase: item figures
    are recomputed and each product's cost is derived again from all of
    its completed purchases under the configured cost policy.

    Returns:
        dict with one {product_id, sku, name, old_cost, new_cost, changed}
        entry per product
    """
    try:
        apply_statement_timeout(session)
        purchase = _get_purchase_for_update(session, purchase_id)

        if purchase.status != PurchaseStatus.COMPLETED:
            raise StateError(
                f'Solo se pueden conciliar costos de compras completadas '
                f'(compra {purchase.purchase_number} en estado {purchase.status.value})',
                current_status=purchase.status,
                allowed_statuses=[PurchaseStatus.COMPLETED]
            )

        apply_purchase_costs(purchase)
        policy = get_cost_policy()

        products = []
        for product_id in dict.fromkeys(item.product_id for item in purchase.items):
            result = recalculate_product_cost(session, product_id, policy=policy)
            product = session.get(Product, product_id)
            result.update({
                'sku': product.sku,
                'name': product.name,
                'changed': round_money(result['old_cost']) != result['new_cost']
            })
            products.append(result)

        purchase_number = purchase.purchase_number
        session.commit()

        changed = sum(1 for p in products if p['changed'])
        logger.info(f"Purchase {purchase_number} costs reconciled: {changed}/{len(products)} products changed")

        return {
            'success': True,
            'message': f'Costos de la compra {purchase_number} conciliados',
            'purchase_id': purchase_id,
            'purchase_number': purchase_number,
            'policy': policy,
            'products': products
        }

    except GestionError:
        session.rollback()
        raise

    except OperationalError as e:
        session.rollback()
        raise _conflict('reconcile', f'#{purchase_id}', e)

    except Exception:
        session.rollback()
        raise


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

def _money(value) -> Optional[str]:
    if value is None:
        return None
    return str(round_money(value))


def _decimal(value) -> Optional[str]:
    return str(value) if value is not None else None


def _foreign(value, exchange_rate) -> Optional[str]:
    if value is None or not exchange_rate:
        return None
    return str(round_money(Decimal(value) / Decimal(exchange_rate)))


def serialize_item(item: PurchaseItem, exchange_rate=None) -> dict:
    product = item.product
    # Foreign views only for items priced in foreign currency
    foreign_rate = exchange_rate if item.unit_price_foreign is not None else None
    return {
        'id': item.id,
        'product_id': item.product_id,
        'product': {
            'id': product.id,
            'sku': product.sku,
            'name': product.name
        } if product else None,
        'quantity': item.quantity,
        'unit_price_foreign': _decimal(item.unit_price_foreign),
        'unit_price_local': _money(item.unit_price_local),
        'distributed_cost': _money(item.distributed_cost),
        'final_unit_cost': _money(item.final_unit_cost),
        'total_cost': _money(item.total_cost),
        'distributed_cost_foreign': _foreign(item.distributed_cost, foreign_rate),
        'final_cost_foreign': _foreign(item.final_unit_cost, foreign_rate),
        'wholesale_price': _money(item.wholesale_price),
        'retail_price': _money(item.retail_price)
    }


def serialize_purchase(purchase: Purchase, include_items: bool = True) -> dict:
    supplier = purchase.supplier
    data = {
        'id': purchase.id,
        'purchase_number': purchase.purchase_number,
        'supplier_id': purchase.supplier_id,
        'supplier': {
            'id': supplier.id,
            'name': supplier.name,
            'country': supplier.country
        } if supplier else None,
        'type': purchase.type.value,
        'currency': purchase.currency,
        'exchange_rate': _decimal(purchase.exchange_rate),
        'exchange_type': purchase.exchange_type,
        'subtotal_foreign': _money(purchase.subtotal_foreign),
        'subtotal_local': _money(purchase.subtotal_local),
        'total_costs': _money(purchase.total_costs),
        'total': _money(purchase.total),
        'status': purchase.status.value,
        'order_date': purchase.order_date.isoformat() if purchase.order_date else None,
        'expected_date': purchase.expected_date.isoformat() if purchase.expected_date else None,
        'completed_at': purchase.completed_at.isoformat() if purchase.completed_at else None,
        'notes': purchase.notes,
        'is_editable': purchase.is_editable,
        'is_deletable': purchase.is_deletable,
        'created_at': purchase.created_at.isoformat() if purchase.created_at else None,
        'updated_at': purchase.updated_at.isoformat() if purchase.updated_at else None
    }
    for _key, amount_attr, currency_attr in OVERHEAD_CATEGORIES:
        data[amount_attr] = _money(getattr(purchase, amount_attr))
        data[currency_attr] = getattr(purchase, currency_attr)

    if include_items:
        data['items'] = [serialize_item(item, purchase.exchange_rate) for item in purchase.items]
    else:
        data['items_count'] = len(purchase.items)
    return data


def get_purchase_detail(purchase_id: int, session) -> dict:
    """Purchase with supplier and enriched items; NotFoundError if missing."""
    purchase = session.get(Purchase, purchase_id)
    if not purchase:
        raise NotFoundError(f'Compra #{purchase_id} no encontrada')
    return serialize_purchase(purchase)


def list_purchases(session, page: int = 1, limit: int = 10, status: str = None, type_: str = None,
                   supplier_id: int = None, search: str = None) -> dict:
    """
    Paginated purchase list, newest first.

    Filters: status, type, supplier and free-text search over purchase
    number, supplier name and notes.
    """
    if page < 1:
        raise ValidationError('La página debe ser mayor a 0', field='page')
    if limit < 1:
        raise ValidationError('El límite debe ser mayor a 0', field='limit')

    query = session.query(Purchase).outerjoin(Supplier, Purchase.supplier_id == Supplier.id)

    if status:
        query = query.filter(Purchase.status == parse_status(status))
    if type_:
        try:
            query = query.filter(Purchase.type == PurchaseType(str(type_).upper()))
        except ValueError:
            raise ValidationError(f'Tipo de compra inválido: {type_}', field='type')
    if supplier_id:
        query = query.filter(Purchase.supplier_id == supplier_id)
    if search:
        pattern = f'%{search}%'
        query = query.filter(or_(
            Purchase.purchase_number.ilike(pattern),
            Supplier.name.ilike(pattern),
            Purchase.notes.ilike(pattern)
        ))

    total = query.count()
    purchases: List[Purchase] = query.order_by(
        Purchase.created_at.desc(), Purchase.id.desc()
    ).offset((page - 1) * limit).limit(limit).all()

    return {
        'purchases': [serialize_purchase(p, include_items=False) for p in purchases],
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'pages': math.ceil(total / limit) if total else 0
        }
    }
