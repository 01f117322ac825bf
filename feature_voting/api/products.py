"""Product API Routes."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status

from ..core.dependencies import CurrentUserDep, SessionDep, SystemAdminDep
from ..schemas import MessageResponse, ProductCreate, ProductResponse, ProductUpdate
from ..services import Forbidden, ProductService

router = APIRouter(prefix="/products", tags=["products"])


def get_product_service(session: SessionDep) -> ProductService:
    return ProductService(session)


ProductServiceDep = Annotated[ProductService, Depends(get_product_service)]


@router.get("", response_model=list[ProductResponse])
async def list_products(current_user: CurrentUserDep, products: ProductServiceDep):
    """All products for system admins; owned or stakeholder products otherwise."""
    roles = current_user.roles
    if roles.is_system_admin:
        return await products.list_products()
    return await products.list_products(
        roles.owned_product_ids | roles.stakeholder_product_ids
    )


@router.post("", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(
    request: ProductCreate,
    current_user: SystemAdminDep,
    products: ProductServiceDep,
):
    return await products.create(request.name, request.color_hex)


@router.patch("/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: UUID,
    request: ProductUpdate,
    current_user: CurrentUserDep,
    products: ProductServiceDep,
):
    if not current_user.roles.can_manage_product(product_id):
        raise Forbidden("You do not have permission to manage this product")
    return await products.update(product_id, request.model_dump(exclude_unset=True))


@router.delete("/{product_id}", response_model=MessageResponse)
async def delete_product(
    product_id: UUID,
    current_user: SystemAdminDep,
    products: ProductServiceDep,
):
    """Delete a product; refused while any session still belongs to it."""
    product = await products.get(product_id)
    name = product.name
    await products.delete(product_id)
    return MessageResponse(message=f"Deleted product {name}")
