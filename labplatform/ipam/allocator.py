"""IP address pool allocator.

Every mutating call runs inside one transaction that first locks the pool
row (``SELECT ... FOR UPDATE``) and, within this process, holds a per-pool
``asyncio.Lock``. The lowest free address in ``[start_ip, end_ip]`` is always
handed out first.
"""

import asyncio
from collections import defaultdict

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from labplatform.errors import (
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    PoolExhaustedError,
)
from labplatform.models import IPAllocation, IPAllocationStatus, IPPool, IPPoolStatus, utcnow
from labplatform.schemas import IPPoolCreate

from . import addresses

logger = structlog.get_logger(__name__)


class IPAllocator:
    """Reserves, confirms and releases addresses in IP pools."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker
        self._pool_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # Pools

    async def create_pool(self, data: IPPoolCreate) -> IPPool:
        """Validate and persist a new pool.

        Raises:
            InvalidInputError: On a malformed CIDR/address, mixed families,
                a bound or gateway outside the CIDR, or start > end.
        """
        network = addresses.parse_network(data.cidr)
        start = addresses.normalize(data.start_ip)
        end = addresses.normalize(data.end_ip)
        gateway = addresses.normalize(data.gateway)

        if not addresses.same_family(start, end, gateway, str(network.network_address)):
            raise InvalidInputError("pool addresses and CIDR must share one address family")
        for label, value in (("start_ip", start), ("end_ip", end), ("gateway", gateway)):
            if not addresses.in_network(value, str(network)):
                raise InvalidInputError(f"{label} {value} is outside {network}")
        if addresses.compare(addresses.to_canonical(start), addresses.to_canonical(end)) > 0:
            raise InvalidInputError(f"start_ip {start} is after end_ip {end}")

        pool = IPPool(
            name=data.name,
            cidr=str(network),
            gateway=gateway,
            dns=data.dns,
            vlan_tag=data.vlan_tag,
            start_ip=start,
            end_ip=end,
            zone_id=data.zone_id,
            description=data.description,
            status=IPPoolStatus.ACTIVE.value,
        )
        async with self._session_maker() as session, session.begin():
            session.add(pool)

        logger.info("ip_pool_created", pool_id=pool.id, cidr=pool.cidr, start=start, end=end)
        return pool

    async def get_pool(self, pool_id: str) -> IPPool:
        async with self._session_maker() as session:
            pool = await session.get(IPPool, pool_id)
        if not pool:
            raise NotFoundError("ip pool", pool_id)
        return pool

    async def list_pools(self, zone_id: str | None = None) -> list[IPPool]:
        query = select(IPPool).order_by(IPPool.name)
        if zone_id:
            query = query.where(IPPool.zone_id == zone_id)
        async with self._session_maker() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def find_pool_for_zone(self, zone_id: str) -> IPPool | None:
        """First active pool owned by the zone, if any."""
        query = (
            select(IPPool)
            .where(IPPool.zone_id == zone_id, IPPool.status == IPPoolStatus.ACTIVE.value)
            .order_by(IPPool.created_at, IPPool.id)
            .limit(1)
        )
        async with self._session_maker() as session:
            result = await session.execute(query)
            return result.scalar_one_or_none()

    # Allocations

    async def allocate_next_available(
        self,
        pool_id: str,
        hostname: str | None = None,
        resource_id: str | None = None,
        request_id: str | None = None,
    ) -> IPAllocation:
        """Reserve the lowest free address in the pool.

        Raises:
            NotFoundError: Unknown pool.
            InvalidStateError: Pool is not active.
            PoolExhaustedError: Every address in range is taken.
        """
        async with self._pool_locks[pool_id]:
            async with self._session_maker() as session, session.begin():
                pool = await self._lock_pool(session, pool_id)
                rows = await self._rows_by_address(session, pool_id)
                taken = {
                    address
                    for address, row in rows.items()
                    if row.status != IPAllocationStatus.AVAILABLE.value
                }

                for address in addresses.iter_range(pool.start_ip, pool.end_ip):
                    if address not in taken:
                        allocation = self._reserve(
                            session,
                            pool_id,
                            address,
                            rows.get(address),
                            hostname,
                            resource_id,
                            request_id,
                        )
                        break
                else:
                    logger.warning("ip_pool_exhausted", pool_id=pool_id)
                    raise PoolExhaustedError(pool_id)

        logger.info(
            "ip_allocated",
            pool_id=pool_id,
            ip_address=allocation.ip_address,
            allocation_id=allocation.id,
            request_id=request_id,
        )
        return allocation

    async def allocate_specific(
        self,
        pool_id: str,
        address: str,
        hostname: str | None = None,
        resource_id: str | None = None,
        request_id: str | None = None,
    ) -> IPAllocation:
        """Reserve one given address.

        Raises:
            InvalidInputError: Unparseable address or outside [start_ip, end_ip].
            InvalidStateError: Address already reserved or allocated.
        """
        address = addresses.normalize(address)
        async with self._pool_locks[pool_id]:
            try:
                async with self._session_maker() as session, session.begin():
                    pool = await self._lock_pool(session, pool_id)
                    if not self._in_range(pool, address):
                        raise InvalidInputError(
                            f"{address} is outside pool range {pool.start_ip}-{pool.end_ip}"
                        )

                    result = await session.execute(
                        select(IPAllocation).where(
                            IPAllocation.pool_id == pool_id,
                            IPAllocation.ip_address == address,
                        )
                    )
                    existing = result.scalar_one_or_none()
                    if existing and existing.status != IPAllocationStatus.AVAILABLE.value:
                        raise InvalidStateError(
                            f"{address} is already {existing.status}", existing.status
                        )

                    allocation = self._reserve(
                        session, pool_id, address, existing, hostname, resource_id, request_id
                    )
            except IntegrityError as e:
                # Another process inserted the same address concurrently
                raise InvalidStateError(f"{address} is already allocated") from e

        logger.info(
            "ip_allocated",
            pool_id=pool_id,
            ip_address=address,
            allocation_id=allocation.id,
            request_id=request_id,
        )
        return allocation

    async def confirm(
        self, allocation_id: str, resource_id: str, hostname: str | None = None
    ) -> IPAllocation:
        """Turn a reservation into an allocation bound to a resource."""
        async with self._session_maker() as session, session.begin():
            allocation = await session.get(IPAllocation, allocation_id, with_for_update=True)
            if not allocation:
                raise NotFoundError("ip allocation", allocation_id)
            if allocation.status == IPAllocationStatus.AVAILABLE.value:
                raise InvalidStateError(
                    f"allocation {allocation_id} was released", allocation.status
                )
            allocation.status = IPAllocationStatus.ALLOCATED.value
            allocation.resource_id = resource_id
            if hostname:
                allocation.hostname = hostname

        logger.info(
            "ip_confirmed",
            allocation_id=allocation_id,
            ip_address=allocation.ip_address,
            resource_id=resource_id,
        )
        return allocation

    async def release(self, allocation_id: str) -> IPAllocation:
        """Return an address to the pool. The row is kept for audit."""
        async with self._session_maker() as session, session.begin():
            allocation = await session.get(IPAllocation, allocation_id)
            if not allocation:
                raise NotFoundError("ip allocation", allocation_id)
            pool_id = allocation.pool_id

        async with self._pool_locks[pool_id]:
            async with self._session_maker() as session, session.begin():
                await self._lock_pool(session, pool_id, require_active=False)
                allocation = await session.get(IPAllocation, allocation_id)
                self._reset(allocation)

        logger.info(
            "ip_released",
            pool_id=pool_id,
            allocation_id=allocation_id,
            ip_address=allocation.ip_address,
        )
        return allocation

    async def release_for_request(self, request_id: str) -> int:
        """Release every reservation held by a request; returns how many."""
        allocations = await self.list_by_request(request_id)
        for allocation in allocations:
            await self.release(allocation.id)
        return len(allocations)

    async def get_available_count(self, pool_id: str) -> int:
        """Addresses in range minus rows that are reserved or allocated."""
        async with self._session_maker() as session:
            pool = await session.get(IPPool, pool_id)
            if not pool:
                raise NotFoundError("ip pool", pool_id)
            used = await session.scalar(
                select(func.count())
                .select_from(IPAllocation)
                .where(
                    IPAllocation.pool_id == pool_id,
                    IPAllocation.status != IPAllocationStatus.AVAILABLE.value,
                )
            )
        return addresses.range_size(pool.start_ip, pool.end_ip) - (used or 0)

    async def list_allocations(
        self, pool_id: str, status: IPAllocationStatus | None = None
    ) -> list[IPAllocation]:
        query = select(IPAllocation).where(IPAllocation.pool_id == pool_id)
        if status:
            query = query.where(IPAllocation.status == status.value)
        async with self._session_maker() as session:
            result = await session.execute(query)
            rows = list(result.scalars().all())
        return sorted(rows, key=lambda row: addresses.to_canonical(row.ip_address))

    async def list_by_resource(self, resource_id: str) -> list[IPAllocation]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(IPAllocation).where(IPAllocation.resource_id == resource_id)
            )
            return list(result.scalars().all())

    async def list_by_request(self, request_id: str) -> list[IPAllocation]:
        """Reservations and allocations currently held by a request."""
        async with self._session_maker() as session:
            result = await session.execute(
                select(IPAllocation).where(
                    IPAllocation.request_id == request_id,
                    IPAllocation.status != IPAllocationStatus.AVAILABLE.value,
                )
            )
            return list(result.scalars().all())

    # Internals

    async def _lock_pool(
        self, session: AsyncSession, pool_id: str, require_active: bool = True
    ) -> IPPool:
        result = await session.execute(
            select(IPPool).where(IPPool.id == pool_id).with_for_update()
        )
        pool = result.scalar_one_or_none()
        if not pool:
            raise NotFoundError("ip pool", pool_id)
        if require_active and pool.status != IPPoolStatus.ACTIVE.value:
            raise InvalidStateError(f"ip pool {pool_id} is {pool.status}", pool.status)
        return pool

    @staticmethod
    async def _rows_by_address(session: AsyncSession, pool_id: str) -> dict[str, IPAllocation]:
        result = await session.execute(
            select(IPAllocation).where(IPAllocation.pool_id == pool_id)
        )
        return {row.ip_address: row for row in result.scalars().all()}

    @staticmethod
    def _in_range(pool: IPPool, address: str) -> bool:
        value = addresses.to_canonical(address)
        return (
            addresses.compare(addresses.to_canonical(pool.start_ip), value) <= 0
            and addresses.compare(value, addresses.to_canonical(pool.end_ip)) <= 0
        )

    @staticmethod
    def _reserve(
        session: AsyncSession,
        pool_id: str,
        address: str,
        existing: IPAllocation | None,
        hostname: str | None,
        resource_id: str | None,
        request_id: str | None,
    ) -> IPAllocation:
        """Claim an address, reusing a released row when there is one."""
        allocation = existing or IPAllocation(pool_id=pool_id, ip_address=address)
        allocation.status = (
            IPAllocationStatus.ALLOCATED.value if resource_id else IPAllocationStatus.RESERVED.value
        )
        allocation.hostname = hostname
        allocation.resource_id = resource_id
        allocation.request_id = request_id
        allocation.allocated_at = utcnow()
        if existing is None:
            session.add(allocation)
        return allocation

    @staticmethod
    def _reset(allocation: IPAllocation) -> None:
        allocation.status = IPAllocationStatus.AVAILABLE.value
        allocation.hostname = None
        allocation.resource_id = None
        allocation.request_id = None
        allocation.allocated_at = None
