"""Request orchestrator.

Owns the resource request lifecycle. Approver actions (approve, reject,
retry, delete) are synchronous and validated against the current status.
Provisioning runs on the ``ProvisioningRunner`` and records its outcome on
the request:

    claim approved -> provisioning
    reload aggregate, validate spec
    reserve IP (zone pool)
    render config, persist NodeConfig, commit pending config
    terraform init -> plan -> apply
    create Resource, mark completed, confirm IP, commit applied config

Any failure before completion marks the request failed with the stage and
diagnostic, notifies the requester and stops.
"""

import asyncio
import ipaddress
from pathlib import Path
import shutil

import structlog

from labplatform.config import Settings
from labplatform.errors import (
    ConfigStoreError,
    InvalidInputError,
    InvalidStateError,
    LabPlatformError,
    NotFoundError,
    ProvisioningStageError,
)
from labplatform.gitops import ConfigStore, NodeDocument, RepoTarget, node_name, node_path
from labplatform.ipam import IPAllocator
from labplatform.models import (
    IPAllocation,
    NodeConfig,
    NodeConfigStatus,
    ProvisioningStage,
    RequestStatus,
    Resource,
    ResourceRequest,
    ResourceStatus,
    utcnow,
)
from labplatform.notifications import (
    NotificationEvent,
    NotificationSink,
    notify_safely,
    sink_from_settings,
)
from labplatform.sanitize import for_log
from labplatform.schemas import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    Page,
    ResourceRequestCreate,
    ResourceRequestDTO,
    VMSpec,
    parse_spec,
)
from labplatform.terraform import (
    ConfigGenerator,
    CredentialMaterial,
    GeneratedConfig,
    ModuleFetchAuth,
    NetworkAssignment,
    RenderInput,
    StageResult,
    TerraformExecutor,
)
from labplatform.terraform.executor import NETRC
from labplatform.terraform.hcl import extract_host

from .repository import RequestRepository
from .runner import ProvisioningRunner
from .state_machine import DELETABLE_STATES

logger = structlog.get_logger(__name__)

EXTERNAL_ID_OUTPUTS = ("vm_id", "instance_id", "id")
IP_OUTPUTS = ("vm_ip", "instance_ip", "ip_address")


def _stage_log(stage: ProvisioningStage, result: StageResult) -> str:
    body = result.output if result.success else f"{result.output}\n{result.error}".strip()
    return f"=== Terraform {stage.value.capitalize()} ===\n{body}\n"


class RequestOrchestrator:
    """Resource request lifecycle and provisioning sequence."""

    def __init__(
        self,
        session_maker,
        settings: Settings,
        *,
        runner: ProvisioningRunner | None = None,
        generator: ConfigGenerator | None = None,
        executor: TerraformExecutor | None = None,
        store: ConfigStore | None = None,
        allocator: IPAllocator | None = None,
        sink: NotificationSink | None = None,
    ):
        self.settings = settings
        self.repository = RequestRepository(session_maker)
        self.runner = runner or ProvisioningRunner(settings.max_concurrent_provisioning)
        self.generator = generator or ConfigGenerator()
        self.executor = executor or TerraformExecutor.from_settings(settings)
        self.store = store or ConfigStore.from_settings(settings)
        self.allocator = allocator or IPAllocator(session_maker)
        self.sink = sink or sink_from_settings(settings)

    # Queries

    async def create_request(self, data: ResourceRequestCreate) -> ResourceRequest:
        """Validate and persist a new pending request."""
        parse_spec(data.provider, data.spec)
        request = ResourceRequest(
            **data.model_dump(),
            status=RequestStatus.PENDING.value,
        )
        await self.repository.add(request)
        logger.info(
            "resource_request_created",
            request_id=request.id,
            provider=request.provider,
            environment=request.environment,
            requester_id=request.requester_id,
        )
        return request

    async def get_request(self, request_id: str) -> ResourceRequest:
        return await self.repository.load_aggregate(request_id)

    async def list_requests(
        self,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        status: RequestStatus | None = None,
        environment: str | None = None,
        requester_id: str | None = None,
    ) -> Page:
        page = max(page, 1)
        page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
        items, total = await self.repository.list_page(
            page, page_size, status=status, environment=environment, requester_id=requester_id
        )
        return Page(
            items=[ResourceRequestDTO.model_validate(item) for item in items],
            total=total,
            page=page,
            page_size=page_size,
        )

    # Approver actions

    async def approve(
        self, request_id: str, approver_id: str, reason: str | None = None
    ) -> ResourceRequest:
        """pending -> approved, then schedule provisioning without waiting for it."""
        if not approver_id:
            raise InvalidInputError("approver_id is required")

        moved = await self.repository.transition(
            request_id,
            RequestStatus.PENDING,
            RequestStatus.APPROVED,
            approver_id=approver_id,
            approved_at=utcnow(),
            reason=reason,
        )
        if not moved:
            await self._raise_conflict(request_id, "approve", RequestStatus.PENDING)

        request = await self.repository.get(request_id)
        logger.info("resource_request_approved", request_id=request_id, approver_id=approver_id)
        await notify_safely(
            self.sink,
            NotificationEvent.REQUEST_APPROVED,
            request.requester_id,
            {"request_id": request.id, "title": request.title, "approver_id": approver_id},
        )
        self._schedule(request_id)
        return request

    async def reject(self, request_id: str, approver_id: str, reason: str) -> ResourceRequest:
        """pending -> rejected. A reason is mandatory."""
        if not reason or not reason.strip():
            raise InvalidInputError("a reason is required to reject a request")
        if not approver_id:
            raise InvalidInputError("approver_id is required")

        moved = await self.repository.transition(
            request_id,
            RequestStatus.PENDING,
            RequestStatus.REJECTED,
            approver_id=approver_id,
            rejected_at=utcnow(),
            reason=reason.strip(),
        )
        if not moved:
            await self._raise_conflict(request_id, "reject", RequestStatus.PENDING)

        request = await self.repository.get(request_id)
        logger.info("resource_request_rejected", request_id=request_id, approver_id=approver_id)
        await notify_safely(
            self.sink,
            NotificationEvent.REQUEST_REJECTED,
            request.requester_id,
            {"request_id": request.id, "title": request.title, "reason": request.reason},
        )
        return request

    async def retry(self, request_id: str, user_id: str) -> ResourceRequest:
        """failed -> approved with error, log and timestamps cleared; reschedules provisioning."""
        moved = await self.repository.transition(
            request_id,
            RequestStatus.FAILED,
            RequestStatus.APPROVED,
            error_message=None,
            failed_stage=None,
            provision_log=None,
            provision_started_at=None,
            provision_completed_at=None,
        )
        if not moved:
            await self._raise_conflict(request_id, "retry", RequestStatus.FAILED)

        logger.info("resource_request_retried", request_id=request_id, user_id=user_id)
        self._schedule(request_id)
        return await self.repository.get(request_id)

    async def delete_request(self, request_id: str, user_id: str) -> None:
        """Delete a pending, rejected or failed request and free its IP reservations."""
        deleted = await self.repository.delete_if(request_id, DELETABLE_STATES)
        if not deleted:
            request = await self.repository.get(request_id)
            raise InvalidStateError(
                f"cannot delete request in status {request.status}", request.status
            )
        released = await self.allocator.release_for_request(request_id)
        logger.info(
            "resource_request_deleted",
            request_id=request_id,
            user_id=user_id,
            released_ips=released,
        )

    # Provisioning

    async def run_provisioning(self, request_id: str) -> bool:
        """Execute the provisioning sequence once; returns True on completion.

        The run only proceeds if it wins the approved -> provisioning
        transition, so concurrent triggers for one request never overlap.
        """
        claimed = await self.repository.transition(
            request_id,
            RequestStatus.APPROVED,
            RequestStatus.PROVISIONING,
            provision_started_at=utcnow(),
        )
        if not claimed:
            logger.info("provisioning_already_started", request_id=request_id)
            return False

        log = logger.bind(request_id=request_id)
        log.info("provisioning_started")

        stage = ProvisioningStage.PREPARE
        stage_logs: list[str] = []
        node_config: NodeConfig | None = None
        try:
            request = await self.repository.load_aggregate(request_id)
            spec = parse_spec(request.provider, request.spec)
            allocation, network = await self._reserve_address(request, spec)

            render_input = self._render_input(request, spec, network)
            work_config = self.generator.render(render_input, include_credentials=True)
            stored_config = self.generator.render(render_input, include_credentials=False)

            node_config = await self.repository.save_node_config(
                request.id,
                name=node_name(request.title, request.id),
                path=node_path(request.provider, request.type, request.title, request.id),
                descriptor_name=stored_config.descriptor_name,
                rendered_config=stored_config.descriptor,
                variables=stored_config.variables,
                status=NodeConfigStatus.PENDING.value,
                last_error=None,
            )
            pending_sha = await self._commit_node_config(
                request, node_config, stored_config, NodeConfigStatus.PENDING
            )
            await self.repository.update_node_config(
                node_config.id,
                status=NodeConfigStatus.PROVISIONING.value,
                pending_commit_sha=pending_sha,
            )

            work_dir = self._work_dir(request.id)
            module_auth = await self._module_auth(request)
            await asyncio.to_thread(self._prepare_work_dir, work_dir, work_config, module_auth)

            result: StageResult | None = None
            for stage, run in (
                (ProvisioningStage.INIT, self.executor.init),
                (ProvisioningStage.PLAN, self.executor.plan),
                (ProvisioningStage.APPLY, self.executor.apply),
            ):
                result = await asyncio.to_thread(run, work_dir)
                stage_logs.append(_stage_log(stage, result))
                if not result.success:
                    raise ProvisioningStageError(stage.value, result.diagnostic)

            stage = ProvisioningStage.FINALIZE
            resource = self._build_resource(request, spec, allocation, result.outputs)
            completed = await self.repository.complete_with_resource(
                request.id,
                resource,
                provision_completed_at=utcnow(),
                provision_log="\n".join(stage_logs),
            )
            if not completed:
                log.error("provisioning_completion_conflict")
                return False
        except asyncio.CancelledError:
            await self._record_failure(
                request_id, stage, "provisioning cancelled", stage_logs, node_config
            )
            raise
        except ProvisioningStageError as e:
            await self._record_failure(
                request_id, ProvisioningStage(e.stage), e.diagnostic, stage_logs, node_config
            )
            return False
        except LabPlatformError as e:
            await self._record_failure(request_id, stage, str(e), stage_logs, node_config)
            return False
        except Exception as e:
            log.exception("provisioning_unexpected_error", stage=stage.value)
            await self._record_failure(
                request_id, stage, f"{type(e).__name__}: {e}", stage_logs, node_config
            )
            return False

        log.info(
            "provisioning_completed",
            resource_id=resource.id,
            ip_address=resource.ip_address,
            outputs=sorted(resource.outputs),
        )
        await self._finalize_success(request, resource, allocation, node_config, stored_config)
        return True

    async def destroy_resource(self, request_id: str, user_id: str) -> Resource:
        """Tear down the resource of a completed request.

        Raises:
            InvalidStateError: The request is not completed or its resource
                is not running.
            ProvisioningStageError: terraform init or destroy failed.
        """
        request = await self.repository.load_aggregate(request_id)
        if request.status != RequestStatus.COMPLETED.value or not request.resource:
            raise InvalidStateError(
                f"request {request_id} has no provisioned resource", request.status
            )
        resource = request.resource
        claimed = await self.repository.transition_resource(
            resource.id, ResourceStatus.RUNNING, ResourceStatus.DESTROYING
        )
        if not claimed:
            raise InvalidStateError(f"resource {resource.id} is not running", resource.status)

        log = logger.bind(request_id=request_id, resource_id=resource.id)
        log.info("resource_destroy_started", user_id=user_id)

        try:
            spec = parse_spec(request.provider, request.spec)
            allocations = await self.allocator.list_by_request(request.id)
            network = await self._network_for(allocations[0]) if allocations else None
            render_input = self._render_input(request, spec, network)
            work_config = self.generator.render(render_input, include_credentials=True)

            work_dir = self._work_dir(request.id)
            module_auth = await self._module_auth(request)
            await asyncio.to_thread(self._prepare_work_dir, work_dir, work_config, module_auth)

            for stage, run in (
                (ProvisioningStage.INIT, self.executor.init),
                (ProvisioningStage.DESTROY, self.executor.destroy),
            ):
                result = await asyncio.to_thread(run, work_dir)
                if not result.success:
                    raise ProvisioningStageError(stage.value, result.diagnostic)
        except BaseException as e:
            await self.repository.transition_resource(
                resource.id, ResourceStatus.DESTROYING, ResourceStatus.RUNNING
            )
            if request.node_config:
                await self.repository.update_node_config(
                    request.node_config.id, last_error=for_log(str(e), 2000)
                )
            log.error("resource_destroy_failed", error=for_log(str(e)))
            raise

        await self.repository.transition_resource(
            resource.id, ResourceStatus.DESTROYING, ResourceStatus.DESTROYED
        )
        await self.allocator.release_for_request(request.id)
        for allocation in await self.allocator.list_by_resource(resource.id):
            await self.allocator.release(allocation.id)

        if request.node_config:
            await self.repository.update_node_config(
                request.node_config.id,
                status=NodeConfigStatus.DESTROYED.value,
                destroyed_at=utcnow(),
            )
            stored_config = self.generator.render(render_input, include_credentials=False)
            try:
                await self._commit_node_config(
                    request, request.node_config, stored_config, NodeConfigStatus.DESTROYED
                )
            except (ConfigStoreError, InvalidInputError) as e:
                log.warning("node_config_destroy_commit_failed", error=str(e))

        await asyncio.to_thread(shutil.rmtree, self._work_dir(request.id), True)
        log.info("resource_destroyed")
        await notify_safely(
            self.sink,
            NotificationEvent.RESOURCE_DESTROYED,
            request.requester_id,
            {"request_id": request.id, "resource_id": resource.id, "name": resource.name},
        )
        resource.status = ResourceStatus.DESTROYED.value
        return resource

    # Internals

    def _schedule(self, request_id: str) -> None:
        self.runner.submit(request_id, lambda: self.run_provisioning(request_id))

    async def _raise_conflict(
        self, request_id: str, action: str, expected: RequestStatus
    ) -> None:
        """Raise NotFoundError or InvalidStateError after a lost conditional update."""
        request = await self.repository.get(request_id)
        raise InvalidStateError(
            f"cannot {action} request in status {request.status} (expected {expected.value})",
            request.status,
        )

    def _work_dir(self, request_id: str) -> Path:
        # Kept across retries so terraform state survives a failed apply
        return Path(self.settings.terraform_work_dir) / request_id

    async def _reserve_address(
        self, request: ResourceRequest, spec: VMSpec
    ) -> tuple[IPAllocation | None, NetworkAssignment | None]:
        """Reuse or create the request's reservation in its zone pool."""
        requested_ip = spec.extra_fields().get("ip_address")
        existing = await self.allocator.list_by_request(request.id)
        if existing:
            allocation = existing[0]
        elif request.zone_id and (pool := await self.allocator.find_pool_for_zone(request.zone_id)):
            hostname = spec.name or f"{request.environment}-vm"
            if requested_ip:
                allocation = await self.allocator.allocate_specific(
                    pool.id, requested_ip, hostname=hostname, request_id=request.id
                )
            else:
                allocation = await self.allocator.allocate_next_available(
                    pool.id, hostname=hostname, request_id=request.id
                )
        elif requested_ip:
            return None, NetworkAssignment(ip_address=str(requested_ip))
        else:
            return None, None

        return allocation, await self._network_for(allocation)

    async def _network_for(self, allocation: IPAllocation) -> NetworkAssignment:
        pool = await self.allocator.get_pool(allocation.pool_id)
        return NetworkAssignment(
            ip_address=allocation.ip_address,
            prefix_length=ipaddress.ip_network(pool.cidr, strict=False).prefixlen,
            gateway=pool.gateway,
            dns=pool.dns,
        )

    @staticmethod
    def _render_input(
        request: ResourceRequest, spec: VMSpec, network: NetworkAssignment | None
    ) -> RenderInput:
        data = RenderInput(
            provider=request.provider,
            environment=request.environment,
            spec=spec,
            network=network,
        )
        if request.tf_module:
            data.module_source = request.tf_module.source
            data.module_version = request.tf_module.version

        # Provider registry wins over the module's
        for owner in (request.tf_provider, request.tf_module):
            if owner and owner.registry and owner.registry.endpoint:
                data.registry_endpoint = owner.registry.endpoint
                data.registry_token = owner.registry.token
                break

        if request.credential:
            data.credentials = CredentialMaterial(
                endpoint=request.credential.endpoint,
                username=request.credential.access_key,
                password=request.credential.secret_key,
                token=request.credential.token,
            )
        return data

    async def _module_auth(self, request: ResourceRequest) -> ModuleFetchAuth | None:
        """Git credentials for the module host, from a registered repository."""
        if not request.tf_module:
            return None
        host = extract_host(request.tf_module.source)
        if not host:
            return None
        repo = await self.repository.repo_for_host(host)
        if not repo or not repo.token:
            logger.warning("module_git_credentials_not_found", host=host)
            return None
        return ModuleFetchAuth(host=host, username=repo.username or "git", token=repo.token)

    @staticmethod
    def _prepare_work_dir(
        work_dir: Path, config: GeneratedConfig, module_auth: ModuleFetchAuth | None
    ) -> None:
        config.write(work_dir)
        if module_auth:
            TerraformExecutor.write_module_auth(work_dir, module_auth)
        else:
            (work_dir / NETRC).unlink(missing_ok=True)

    async def _commit_node_config(
        self,
        request: ResourceRequest,
        node_config: NodeConfig,
        config: GeneratedConfig,
        status: NodeConfigStatus,
        resource_id: str | None = None,
    ) -> str | None:
        """Commit the credential-free config; None when no storage repo is registered.

        Pending commit failures fail the run only when gitops is required.
        """
        repo = await self.repository.default_storage_repo()
        if repo is None:
            if self.settings.gitops_required:
                raise ConfigStoreError("no default storage repository registered")
            logger.warning("config_store_not_configured", request_id=request.id)
            return None

        if node_config.storage_repo_id != repo.id:
            await self.repository.update_node_config(node_config.id, storage_repo_id=repo.id)

        document = NodeDocument(
            request_id=request.id,
            name=node_config.name,
            path=node_config.path,
            files={k: v for k, v in config.files().items() if not k.startswith(".")},
            status=status.value,
            resource_id=resource_id,
        )
        target = RepoTarget.from_model(repo)
        try:
            if status == NodeConfigStatus.PENDING:
                return await self.store.commit_pending(target, document)
            if status == NodeConfigStatus.ACTIVE:
                return await self.store.commit_applied(target, document)
            return await self.store.commit_destroyed(target, document)
        except (ConfigStoreError, InvalidInputError) as e:
            if status == NodeConfigStatus.PENDING and not self.settings.gitops_required:
                logger.warning("node_config_commit_failed", request_id=request.id, error=str(e))
                return None
            raise

    @staticmethod
    def _build_resource(
        request: ResourceRequest,
        spec: VMSpec,
        allocation: IPAllocation | None,
        outputs: dict[str, str],
    ) -> Resource:
        external_id = next((outputs[k] for k in EXTERNAL_ID_OUTPUTS if outputs.get(k)), None)
        output_ip = next((outputs[k] for k in IP_OUTPUTS if outputs.get(k)), None)
        return Resource(
            name=f"{request.title}-{request.id[:8]}",
            type=request.type,
            provider=request.provider,
            environment=request.environment,
            status=ResourceStatus.RUNNING.value,
            outputs=outputs,
            owner_id=request.requester_id,
            external_id=external_id,
            ip_address=allocation.ip_address if allocation else output_ip,
            hostname=spec.name or f"{request.environment}-vm",
            description=request.description,
            region_id=request.region_id,
            zone_id=request.zone_id,
        )

    async def _finalize_success(
        self,
        request: ResourceRequest,
        resource: Resource,
        allocation: IPAllocation | None,
        node_config: NodeConfig,
        stored_config: GeneratedConfig,
    ) -> None:
        """Bookkeeping after completion. Failures here are logged, status stays completed."""
        log = logger.bind(request_id=request.id, resource_id=resource.id)

        if allocation:
            try:
                await self.allocator.confirm(allocation.id, resource.id, hostname=resource.hostname)
            except LabPlatformError as e:
                log.warning("ip_confirm_failed", allocation_id=allocation.id, error=str(e))

        applied_sha = None
        try:
            applied_sha = await self._commit_node_config(
                request, node_config, stored_config, NodeConfigStatus.ACTIVE, resource.id
            )
        except (ConfigStoreError, InvalidInputError) as e:
            log.warning("node_config_applied_commit_failed", error=str(e))

        await self.repository.update_node_config(
            node_config.id,
            status=NodeConfigStatus.ACTIVE.value,
            applied_commit_sha=applied_sha,
            provisioned_at=utcnow(),
            last_error=None,
        )
        await notify_safely(
            self.sink,
            NotificationEvent.RESOURCE_PROVISIONED,
            request.requester_id,
            {
                "request_id": request.id,
                "title": request.title,
                "resource_id": resource.id,
                "resource_name": resource.name,
                "ip_address": resource.ip_address,
            },
        )

    async def _record_failure(
        self,
        request_id: str,
        stage: ProvisioningStage,
        diagnostic: str,
        stage_logs: list[str],
        node_config: NodeConfig | None,
    ) -> None:
        """provisioning -> failed, then notify.

        Reservations are kept after an apply failure, since the address may
        already be in use by a partially created machine.
        """
        error_message = for_log(diagnostic, 4000)
        moved = await self.repository.transition(
            request_id,
            RequestStatus.PROVISIONING,
            RequestStatus.FAILED,
            error_message=error_message,
            failed_stage=stage.value,
            provision_log="\n".join(stage_logs) or None,
            provision_completed_at=utcnow(),
        )
        logger.error(
            "provisioning_failed",
            request_id=request_id,
            stage=stage.value,
            error=error_message,
            recorded=moved,
        )
        if not moved:
            return

        if node_config:
            await self.repository.update_node_config(
                node_config.id,
                status=NodeConfigStatus.FAILED.value,
                last_error=error_message,
                provision_log="\n".join(stage_logs) or None,
            )
        # Apply may have started the VM with this address
        if stage not in (ProvisioningStage.APPLY, ProvisioningStage.FINALIZE):
            await self.allocator.release_for_request(request_id)

        request = await self.repository.get(request_id)
        await notify_safely(
            self.sink,
            NotificationEvent.PROVISIONING_FAILED,
            request.requester_id,
            {
                "request_id": request_id,
                "title": request.title,
                "stage": stage.value,
                "error": for_log(diagnostic),
            },
        )

