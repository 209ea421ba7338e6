"""Persistence for resource requests and their provisioning artifacts.

Status changes go through ``transition``, a conditional UPDATE whose WHERE
clause includes the expected current status. Zero affected rows means some
other caller moved the request first; it is never treated as success.
"""

from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from labplatform.errors import NotFoundError
from labplatform.models import (
    GitRepository,
    GitRepoType,
    NodeConfig,
    RequestStatus,
    Resource,
    ResourceRequest,
    ResourceStatus,
    TerraformModule,
    TerraformProvider,
)
from labplatform.terraform.hcl import extract_host

from .state_machine import ensure_transition

_AGGREGATE_OPTIONS = (
    selectinload(ResourceRequest.region),
    selectinload(ResourceRequest.zone),
    selectinload(ResourceRequest.tf_provider).selectinload(TerraformProvider.registry),
    selectinload(ResourceRequest.tf_module).selectinload(TerraformModule.registry),
    selectinload(ResourceRequest.credential),
    selectinload(ResourceRequest.resource),
    selectinload(ResourceRequest.node_config),
)


class RequestRepository:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def add(self, request: ResourceRequest) -> ResourceRequest:
        async with self._session_maker() as session, session.begin():
            session.add(request)
        return request

    async def get(self, request_id: str) -> ResourceRequest:
        async with self._session_maker() as session:
            request = await session.get(ResourceRequest, request_id)
        if not request:
            raise NotFoundError("resource request", request_id)
        return request

    async def load_aggregate(self, request_id: str) -> ResourceRequest:
        """Request with every relation the provisioning sequence reads."""
        async with self._session_maker() as session:
            result = await session.execute(
                select(ResourceRequest)
                .where(ResourceRequest.id == request_id)
                .options(*_AGGREGATE_OPTIONS)
            )
            request = result.scalar_one_or_none()
        if not request:
            raise NotFoundError("resource request", request_id)
        return request

    async def list_page(
        self,
        page: int,
        page_size: int,
        status: RequestStatus | None = None,
        environment: str | None = None,
        requester_id: str | None = None,
    ) -> tuple[list[ResourceRequest], int]:
        filters = []
        if status:
            filters.append(ResourceRequest.status == status.value)
        if environment:
            filters.append(ResourceRequest.environment == environment)
        if requester_id:
            filters.append(ResourceRequest.requester_id == requester_id)

        async with self._session_maker() as session:
            total = await session.scalar(
                select(func.count()).select_from(ResourceRequest).where(*filters)
            )
            result = await session.execute(
                select(ResourceRequest)
                .where(*filters)
                .order_by(ResourceRequest.created_at.desc(), ResourceRequest.id)
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            return list(result.scalars().all()), total or 0

    async def transition(
        self,
        request_id: str,
        from_status: RequestStatus,
        to_status: RequestStatus,
        **values: Any,
    ) -> bool:
        """Atomically move request_id from from_status to to_status.

        Returns False when the request was not in from_status.
        """
        ensure_transition(from_status, to_status)
        async with self._session_maker() as session, session.begin():
            return await self._conditional_update(
                session, request_id, from_status, to_status, values
            )

    async def complete_with_resource(
        self, request_id: str, resource: Resource, **values: Any
    ) -> bool:
        """Create the resource and mark the request completed in one transaction.

        If the request is no longer provisioning the resource is rolled back,
        so a request never ends up with more than one resource.
        """
        ensure_transition(RequestStatus.PROVISIONING, RequestStatus.COMPLETED)
        async with self._session_maker() as session:
            session.add(resource)
            await session.flush()
            moved = await self._conditional_update(
                session,
                request_id,
                RequestStatus.PROVISIONING,
                RequestStatus.COMPLETED,
                {**values, "resource_id": resource.id},
            )
            if moved:
                await session.commit()
            else:
                await session.rollback()
        return moved

    async def delete_if(self, request_id: str, statuses: frozenset[RequestStatus]) -> bool:
        """Delete the request (and its node config) only while in one of statuses."""
        async with self._session_maker() as session, session.begin():
            result = await session.execute(
                select(ResourceRequest.id)
                .where(
                    ResourceRequest.id == request_id,
                    ResourceRequest.status.in_([s.value for s in statuses]),
                )
                .with_for_update()
            )
            if result.scalar_one_or_none() is None:
                return False
            await session.execute(
                delete(NodeConfig)
                .where(NodeConfig.resource_request_id == request_id)
                .execution_options(synchronize_session=False)
            )
            await session.execute(
                delete(ResourceRequest)
                .where(ResourceRequest.id == request_id)
                .execution_options(synchronize_session=False)
            )
            return True

    # Node configs

    async def save_node_config(self, request_id: str, **values: Any) -> NodeConfig:
        """Create or update the request's single node config."""
        async with self._session_maker() as session, session.begin():
            result = await session.execute(
                select(NodeConfig).where(NodeConfig.resource_request_id == request_id)
            )
            node_config = result.scalar_one_or_none()
            if node_config is None:
                node_config = NodeConfig(resource_request_id=request_id)
                session.add(node_config)
            for key, value in values.items():
                setattr(node_config, key, value)
        return node_config

    async def update_node_config(self, node_config_id: str, **values: Any) -> None:
        async with self._session_maker() as session, session.begin():
            await session.execute(
                update(NodeConfig)
                .where(NodeConfig.id == node_config_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )

    # Resources

    async def transition_resource(
        self,
        resource_id: str,
        from_status: ResourceStatus,
        to_status: ResourceStatus,
        **values: Any,
    ) -> bool:
        async with self._session_maker() as session, session.begin():
            result = await session.execute(
                update(Resource)
                .where(Resource.id == resource_id, Resource.status == from_status.value)
                .values(status=to_status.value, **values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

    # Git registrations

    async def default_storage_repo(self) -> GitRepository | None:
        async with self._session_maker() as session:
            result = await session.execute(
                select(GitRepository)
                .where(
                    GitRepository.repo_type == GitRepoType.STORAGE.value,
                    GitRepository.is_default.is_(True),
                    GitRepository.status == "active",
                )
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def repo_for_host(self, host: str) -> GitRepository | None:
        """First registered repository whose URL host matches, preferring defaults."""
        async with self._session_maker() as session:
            result = await session.execute(
                select(GitRepository).order_by(
                    GitRepository.is_default.desc(), GitRepository.created_at
                )
            )
            for repo in result.scalars().all():
                if repo.url and extract_host(repo.url) == host:
                    return repo
        return None

    @staticmethod
    async def _conditional_update(
        session: AsyncSession,
        request_id: str,
        from_status: RequestStatus,
        to_status: RequestStatus,
        values: dict[str, Any],
    ) -> bool:
        result = await session.execute(
            update(ResourceRequest)
            .where(
                ResourceRequest.id == request_id,
                ResourceRequest.status == from_status.value,
            )
            .values(status=to_status.value, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0
