from datetime import datetime

from sqlalchemy import Column, Integer, BigInteger, String, Text, DateTime, Boolean
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    # cents; only ResourceStore.apply_transaction writes this column
    balance = Column(BigInteger, nullable=False, default=0)
    currency = Column(String(10), nullable=False, default="USD")
    is_suspended = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class Server(Base):
    __tablename__ = "servers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    size = Column(String(64), nullable=False)
    region = Column(String(32), nullable=False, default="nyc1")
    status = Column(String(20), nullable=False, default="new")
    provider_instance_id = Column(String(64), nullable=True, index=True)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    last_monitored = Column(DateTime, nullable=True)


class Volume(Base):
    __tablename__ = "volumes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    server_id = Column(Integer, nullable=True, index=True)
    name = Column(String(255), nullable=False)
    size_gb = Column(Integer, nullable=False)
    region = Column(String(32), nullable=False, default="nyc1")
    provider_volume_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class BillingTransaction(Base):
    __tablename__ = "billing_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    server_id = Column(Integer, nullable=True, index=True)
    amount = Column(BigInteger, nullable=False)
    currency = Column(String(10), nullable=False, default="USD")
    status = Column(String(20), nullable=False, default="completed")
    type = Column(String(64), nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    external_reference = Column(String(128), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
