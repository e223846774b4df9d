import logging
import math
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pantry.backend import Backend, BackendError, TableQuery, QueryResult
from pantry.config import LOW_STOCK_THRESHOLD
from pantry.errors import (
    AuthorizationFailure, BackendFailure, NotFound, StockConflict, ValidationFailure,
)
from pantry.notifications import publish_inventory_update
from pantry.schemas import (
    UNITS, DashboardStats, ItemSchema, UserListing, UserSchema,
    WithdrawalReceipt, WithdrawalSchema,
)

logger = logging.getLogger(__name__)

ITEM_NOT_FOUND = "Item não encontrado."
USER_NOT_FOUND = "Usuário não encontrado."
INVALID_QUANTITY = "Quantidade inválida."
INVALID_UNIT = "Unidade inválida. Use kg ou unidade."
EXCEEDS_STOCK = "Quantidade a retirar é maior que o estoque disponível."
STOCK_CHANGED = "O estoque deste item foi alterado. Atualize e tente novamente."
ADMIN_ONLY = "Apenas administradores podem realizar esta ação."


class RemovalState(str, Enum):
    ACTIVE = "active"
    REMOVAL_REQUESTED = "removal_requested"


def removal_state(item: ItemSchema) -> RemovalState:
    return RemovalState.REMOVAL_REQUESTED if item.removal_requested else RemovalState.ACTIVE


async def _execute(query: TableQuery, failure: str) -> QueryResult:
    try:
        return await query.execute()
    except BackendError as e:
        logger.error(f"{failure} ({e})")
        raise BackendFailure(failure) from e


def _require_admin(user: UserSchema):
    if not user.is_super_admin:
        logger.warning(f"User {user.email} tried an admin-only action")
        raise AuthorizationFailure(ADMIN_ONLY)


def parse_quantity(value: Any) -> float:
    if isinstance(value, bool):
        raise ValidationFailure(INVALID_QUANTITY)
    try:
        quantity = float(value)
    except (TypeError, ValueError):
        raise ValidationFailure(INVALID_QUANTITY) from None
    if not math.isfinite(quantity):
        raise ValidationFailure(INVALID_QUANTITY)
    return quantity


# ============================================================================
# Items
# ============================================================================

async def list_items(backend: Backend) -> List[ItemSchema]:
    result = await _execute(
        backend.table("items").select("*").order("name"),
        "Erro ao carregar itens.",
    )
    return [ItemSchema.model_validate(row) for row in result.data]


async def get_item(backend: Backend, item_id: str) -> ItemSchema:
    result = await _execute(
        backend.table("items").select("*").eq("id", item_id),
        "Erro ao carregar item.",
    )
    if not result.data:
        raise NotFound(ITEM_NOT_FOUND)
    return ItemSchema.model_validate(result.data[0])


async def add_item(
    backend: Backend,
    user: UserSchema,
    name: str,
    quantity: Any,
    unit: str,
    category: Optional[str] = None,
) -> ItemSchema:
    name = (name or "").strip()
    if not name:
        raise ValidationFailure("Informe o nome do item.")
    quantity = parse_quantity(quantity)
    if quantity < 0:
        raise ValidationFailure(INVALID_QUANTITY)
    if unit not in UNITS:
        raise ValidationFailure(INVALID_UNIT)

    result = await _execute(
        backend.table("items").insert({
            "name": name,
            "quantity": quantity,
            "unit": unit,
            "category": (category or "").strip() or None,
            "created_by": user.id,
        }),
        "Erro ao cadastrar item. Tente novamente.",
    )
    item = ItemSchema.model_validate(result.data[0])
    logger.info(f"Item {item.name} ({item.quantity} {item.unit}) added by {user.email}")
    await publish_inventory_update(f"Item added: {item.name}")
    return item


async def request_removal(backend: Backend, user: UserSchema, item_id: str) -> ItemSchema:
    item = await get_item(backend, item_id)
    if removal_state(item) is RemovalState.REMOVAL_REQUESTED:
        raise ValidationFailure("A remoção deste item já foi solicitada.")
    result = await _execute(
        backend.table("items").update({
            "removal_requested": True,
            "requested_by": user.id,
            "requested_at": datetime.utcnow(),
        }).eq("id", item_id),
        "Erro ao solicitar remoção.",
    )
    if not result.data:
        raise NotFound(ITEM_NOT_FOUND)
    logger.info(f"Removal of item {item.name} requested by {user.email}")
    return ItemSchema.model_validate(result.data[0])


async def deny_removal(backend: Backend, user: UserSchema, item_id: str) -> ItemSchema:
    _require_admin(user)
    item = await get_item(backend, item_id)
    if removal_state(item) is not RemovalState.REMOVAL_REQUESTED:
        raise ValidationFailure("Não há solicitação de remoção para este item.")
    result = await _execute(
        backend.table("items").update({
            "removal_requested": False,
            "requested_by": None,
            "requested_at": None,
        }).eq("id", item_id),
        "Erro ao recusar remoção.",
    )
    if not result.data:
        raise NotFound(ITEM_NOT_FOUND)
    logger.info(f"Removal of item {item.name} denied by {user.email}")
    return ItemSchema.model_validate(result.data[0])


async def delete_item(backend: Backend, user: UserSchema, item_id: str) -> ItemSchema:
    """Hard delete; approves a pending removal request if there is one."""
    _require_admin(user)
    result = await _execute(
        backend.table("items").delete().eq("id", item_id),
        "Erro ao remover item.",
    )
    if not result.data:
        raise NotFound(ITEM_NOT_FOUND)
    item = ItemSchema.model_validate(result.data[0])
    logger.info(f"Item {item.name} removed by {user.email}")
    await publish_inventory_update(f"Item removed: {item.name}")
    return item


# ============================================================================
# Withdrawals
# ============================================================================

WITHDRAW_FAILED = "Erro ao registrar retirada. Tente novamente."


async def decrement_stock(backend: Backend, item: ItemSchema, quantity: float) -> ItemSchema:
    # only matches if nobody touched the stock since ``item`` was read
    result = await _execute(
        backend.table("items")
        .update({"quantity": item.quantity - quantity})
        .eq("id", item.id)
        .eq("quantity", item.quantity),
        WITHDRAW_FAILED,
    )
    if not result.data:
        logger.warning(f"Stock of item {item.id} changed before the withdrawal was written")
        raise StockConflict(STOCK_CHANGED)
    return ItemSchema.model_validate(result.data[0])


async def _restore_stock(backend: Backend, item: ItemSchema, quantity: float):
    try:
        result = await (
            backend.table("items")
            .update({"quantity": item.quantity + quantity})
            .eq("id", item.id)
            .eq("quantity", item.quantity)
            .execute()
        )
    except BackendError as e:
        logger.error(f"Could not restore {quantity} to item {item.id}: {e}")
        return
    if not result.data:
        logger.error(f"Could not restore {quantity} to item {item.id}: stock changed meanwhile")


async def withdraw_item(backend: Backend, user: UserSchema, item_id: str, quantity: Any) -> WithdrawalReceipt:
    quantity = parse_quantity(quantity)
    if quantity <= 0:
        raise ValidationFailure("Informe uma quantidade maior que zero.")

    item = await get_item(backend, item_id)
    if removal_state(item) is RemovalState.REMOVAL_REQUESTED:
        raise ValidationFailure("Este item aguarda remoção e não pode ser retirado.")
    if quantity > item.quantity:
        logger.warning(f"Withdrawal of {quantity} rejected for item {item.name}: only {item.quantity} left")
        raise ValidationFailure(EXCEEDS_STOCK)

    updated = await decrement_stock(backend, item, quantity)
    try:
        result = await backend.table("withdrawals").insert({
            "item_id": item.id,
            "user_id": user.id,
            "quantity": quantity,
        }).execute()
    except BackendError as e:
        logger.error(f"Error recording withdrawal for item {item.id}: {e}")
        await _restore_stock(backend, updated, quantity)
        raise BackendFailure(WITHDRAW_FAILED) from e

    withdrawal = WithdrawalSchema.model_validate(result.data[0])
    logger.info(f"{user.email} withdrew {quantity} {item.unit} of {item.name}")
    await publish_inventory_update(f"Inventory updated: {quantity} {item.unit} of {item.name} withdrawn")
    return WithdrawalReceipt(withdrawal=withdrawal, item=updated)


async def list_withdrawals(backend: Backend, user: UserSchema) -> List[WithdrawalSchema]:
    """Newest first; members only see their own withdrawals."""
    query = backend.table("withdrawals").select(
        "*",
        embed={"item": ("items", ["name", "unit"]), "user": ("users", ["full_name"])},
    ).order("withdrawn_at", desc=True)
    if not user.is_super_admin:
        query = query.eq("user_id", user.id)
    result = await _execute(query, "Erro ao carregar retiradas.")
    return [WithdrawalSchema.model_validate(row) for row in result.data]


async def _count(query: TableQuery) -> int:
    result = await _execute(query, "Erro ao carregar estatísticas.")
    return result.count or 0


async def dashboard_stats(backend: Backend, now: Optional[datetime] = None) -> DashboardStats:
    now = now or datetime.utcnow()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return DashboardStats(
        total_items=await _count(backend.table("items").select("*", count="exact", head=True)),
        total_withdrawals=await _count(backend.table("withdrawals").select("*", count="exact", head=True)),
        monthly_withdrawals=await _count(
            backend.table("withdrawals").select("*", count="exact", head=True).gte("withdrawn_at", month_start)
        ),
        low_stock_items=await _count(
            backend.table("items").select("*", count="exact", head=True)
            .gt("quantity", 0).lte("quantity", LOW_STOCK_THRESHOLD)
        ),
        out_of_stock_items=await _count(
            backend.table("items").select("*", count="exact", head=True).eq("quantity", 0)
        ),
    )


# ============================================================================
# User administration
# ============================================================================

async def list_users(backend: Backend) -> UserListing:
    result = await _execute(
        backend.table("users").select("*").order("created_at", desc=True),
        "Erro ao carregar usuários.",
    )
    users = [UserSchema.model_validate(row) for row in result.data]
    return UserListing(
        users=users,
        pending=[u for u in users if not u.is_approved],
        approved=[u for u in users if u.is_approved],
    )


async def approve_user(backend: Backend, admin: UserSchema, user_id: str) -> UserListing:
    _require_admin(admin)
    result = await _execute(
        backend.table("users").update({"is_approved": True}).eq("id", user_id),
        "Erro ao aprovar usuário.",
    )
    if not result.data:
        raise NotFound(USER_NOT_FOUND)
    logger.info(f"User {user_id} approved by {admin.email}")
    return await list_users(backend)


async def reject_user(backend: Backend, admin: UserSchema, user_id: str, confirm: bool = False) -> UserListing:
    """Deletes the profile row. Irreversible, so ``confirm`` must be set."""
    _require_admin(admin)
    if not confirm:
        raise ValidationFailure("Confirme a rejeição: esta ação não pode ser desfeita.")
    if user_id == admin.id:
        raise ValidationFailure("Você não pode rejeitar a própria conta.")
    result = await _execute(
        backend.table("users").delete().eq("id", user_id),
        "Erro ao rejeitar usuário.",
    )
    if not result.data:
        raise NotFound(USER_NOT_FOUND)
    logger.info(f"User {user_id} rejected by {admin.email}")
    return await list_users(backend)


async def toggle_admin(backend: Backend, admin: UserSchema, user_id: str) -> UserListing:
    _require_admin(admin)
    current = await _execute(
        backend.table("users").select("*").eq("id", user_id),
        "Erro ao atualizar permissões.",
    )
    if not current.data:
        raise NotFound(USER_NOT_FOUND)
    is_super_admin = not current.data[0]["is_super_admin"]
    await _execute(
        backend.table("users").update({"is_super_admin": is_super_admin}).eq("id", user_id),
        "Erro ao atualizar permissões.",
    )
    logger.info(f"User {user_id} is_super_admin set to {is_super_admin} by {admin.email}")
    return await list_users(backend)
