from .ipam import IPAllocationDTO, IPPoolCreate, IPPoolDTO
from .requests import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    Page,
    ResourceDTO,
    ResourceRequestCreate,
    ResourceRequestDTO,
)
from .spec import SUPPORTED_PROVIDERS, OpenStackSpec, PVESpec, VMSpec, VMwareSpec, parse_spec

__all__ = [
    "IPAllocationDTO",
    "IPPoolCreate",
    "IPPoolDTO",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "Page",
    "ResourceDTO",
    "ResourceRequestCreate",
    "ResourceRequestDTO",
    "SUPPORTED_PROVIDERS",
    "OpenStackSpec",
    "PVESpec",
    "VMSpec",
    "VMwareSpec",
    "parse_spec",
]
