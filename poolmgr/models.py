from sqlalchemy import Column, Integer, BigInteger, String, Boolean, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime
import enum
import uuid

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())

# ============================================================================
# ENUM DEFINITIONS
# ============================================================================

class ProviderType(str, enum.Enum):
    """Cloud storage provider behind an account"""
    GOOGLE = "google"
    MICROSOFT = "microsoft"
    DROPBOX = "dropbox"

class AccountStatus(str, enum.Enum):
    """Account operational state"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"

class PoolStatus(str, enum.Enum):
    """Storage pool lifecycle state"""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"

class UnionStrategy(str, enum.Enum):
    """Known union strategies; unknown strings are stored and fall back to UNION"""
    UNION = "union"
    EPLUS = "eplus"
    EPFF = "epff"
    MIRROR = "mirror"

# ============================================================================
# CORE MODEL DEFINITIONS
# ============================================================================

class Account(Base):
    """Credentialed connection to one cloud storage provider"""
    __tablename__ = "accounts"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)  # ProviderType value
    email = Column(String, nullable=False, default="")

    # Opaque credential blob, passed verbatim to rclone
    access_token = Column(Text)

    # Quota (bytes)
    quota_total = Column(BigInteger, default=0, nullable=False)
    quota_used = Column(BigInteger, default=0, nullable=False)

    status = Column(String, default=AccountStatus.ACTIVE.value, nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    memberships = relationship("PoolMembership", back_populates="account", cascade="all, delete-orphan")


class StoragePool(Base):
    """Union of accounts mounted as a single volume"""
    __tablename__ = "storage_pools"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    strategy = Column(String, nullable=False, default=UnionStrategy.UNION.value)

    # Chunking
    enable_chunker = Column(Boolean, default=False, nullable=False)
    chunk_size = Column(String, default="100M", nullable=False)
    allow_large_files = Column(Boolean, default=False, nullable=False)

    # State (written only by PoolManager); mount_path is set iff status == running
    mount_path = Column(String)
    status = Column(String, default=PoolStatus.STOPPED.value, nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    memberships = relationship(
        "PoolMembership",
        back_populates="pool",
        cascade="all, delete-orphan",
        order_by="PoolMembership.priority",
    )

    @property
    def accounts(self):
        """Member accounts in priority order"""
        return [m.account for m in self.memberships]


class PoolMembership(Base):
    """Account participating in a pool; priority orders the union upstreams"""
    __tablename__ = "pool_accounts"
    __table_args__ = (UniqueConstraint("pool_id", "priority", name="uq_pool_priority"),)

    pool_id = Column(String, ForeignKey("storage_pools.id", ondelete="CASCADE"), primary_key=True)
    account_id = Column(String, ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True)
    priority = Column(Integer, default=0, nullable=False)

    # Relationships
    pool = relationship("StoragePool", back_populates="memberships")
    account = relationship("Account", back_populates="memberships")
