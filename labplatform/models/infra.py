"""Infrastructure catalogue models.

These rows are managed elsewhere; the provisioning pipeline only reads them.
"""

from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, id_column


class Region(Base):
    __tablename__ = "regions"

    id: Mapped[str] = id_column()
    name: Mapped[str] = mapped_column(String(100))
    code: Mapped[str] = mapped_column(String(50), unique=True)


class Zone(Base):
    __tablename__ = "zones"

    id: Mapped[str] = id_column()
    name: Mapped[str] = mapped_column(String(100))
    code: Mapped[str] = mapped_column(String(50))
    region_id: Mapped[Optional[str]] = mapped_column(ForeignKey("regions.id"))
    status: Mapped[str] = mapped_column(String(20), default="active")


class Credential(Base):
    """Provider API credential. Secret fields must never be logged."""

    __tablename__ = "credentials"

    id: Mapped[str] = id_column()
    name: Mapped[str] = mapped_column(String(100))
    provider: Mapped[str] = mapped_column(String(50))
    endpoint: Mapped[Optional[str]] = mapped_column(String(500))
    access_key: Mapped[Optional[str]] = mapped_column(String(255))
    secret_key: Mapped[Optional[str]] = mapped_column(String(500))
    token: Mapped[Optional[str]] = mapped_column(String(1000))

    def __repr__(self) -> str:
        return f"<Credential id={self.id} name={self.name} provider={self.provider}>"


class TerraformRegistry(Base):
    """Private registry used as a provider network mirror."""

    __tablename__ = "terraform_registries"

    id: Mapped[str] = id_column()
    name: Mapped[str] = mapped_column(String(100))
    endpoint: Mapped[str] = mapped_column(String(500))
    token: Mapped[Optional[str]] = mapped_column(String(1000))
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)


class TerraformProvider(Base):
    __tablename__ = "terraform_providers"

    id: Mapped[str] = id_column()
    name: Mapped[str] = mapped_column(String(100))
    namespace: Mapped[Optional[str]] = mapped_column(String(100))
    source: Mapped[str] = mapped_column(String(255))
    version: Mapped[Optional[str]] = mapped_column(String(50))
    registry_id: Mapped[Optional[str]] = mapped_column(ForeignKey("terraform_registries.id"))

    registry: Mapped[Optional[TerraformRegistry]] = relationship()


class TerraformModule(Base):
    """Reusable provisioning template referenced by source URL and version."""

    __tablename__ = "terraform_modules"

    id: Mapped[str] = id_column()
    name: Mapped[str] = mapped_column(String(100))
    source: Mapped[str] = mapped_column(String(500))
    version: Mapped[Optional[str]] = mapped_column(String(50))
    provider: Mapped[Optional[str]] = mapped_column(String(50))
    description: Mapped[Optional[str]] = mapped_column(Text)
    registry_id: Mapped[Optional[str]] = mapped_column(ForeignKey("terraform_registries.id"))

    registry: Mapped[Optional[TerraformRegistry]] = relationship()


class GitAuthType(str, Enum):
    NONE = "none"
    TOKEN = "token"
    PASSWORD = "password"
    SSH_KEY = "ssh_key"


class GitRepoType(str, Enum):
    STORAGE = "storage"  # Receives generated node configs
    MODULES = "modules"  # Hosts module sources


class GitRepository(Base):
    """Registered git repository."""

    __tablename__ = "git_repositories"

    id: Mapped[str] = id_column()
    name: Mapped[str] = mapped_column(String(100))
    url: Mapped[str] = mapped_column(String(500))
    branch: Mapped[str] = mapped_column(String(100), default="main")
    auth_type: Mapped[str] = mapped_column(String(20), default=GitAuthType.NONE.value)
    username: Mapped[Optional[str]] = mapped_column(String(100))
    token: Mapped[Optional[str]] = mapped_column(String(1000))
    base_path: Mapped[str] = mapped_column(String(255), default="")
    repo_type: Mapped[str] = mapped_column(String(20), default=GitRepoType.STORAGE.value)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String(20), default="active")

    def __repr__(self) -> str:
        return f"<GitRepository id={self.id} name={self.name} type={self.repo_type}>"
