"""
SQLAlchemy models for the Budget API.

Tables:
- accounts: Bank accounts, keyed by normalized IBAN
- categories: Income / expense / transfer categories
- rules: Keyword rules that map a transaction description to a category
- import_batches: One row per statement import attempt (never deleted)
- transactions: Ledger entries written by the import pipeline
"""

from datetime import datetime

from sqlalchemy import (
    JSON, Boolean, Column, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text
)
from sqlalchemy.orm import relationship

from .database import Base

KINDS = ("income", "expense", "transfer")
BATCH_STATUSES = ("pending", "completed", "failed")


class Account(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    iban = Column(String(34), unique=True, nullable=True, index=True)  # uppercase, alphanumerics only
    currency_code = Column(String(3), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    transactions = relationship("Transaction", back_populates="account")

    def __repr__(self):
        return f"<Account {self.name} ({self.iban})>"


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    kind = Column(String(20), nullable=False)  # "income", "expense", "transfer"
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    transactions = relationship("Transaction", back_populates="category")
    rules = relationship("Rule", back_populates="category")

    def __repr__(self):
        return f"<Category {self.name} ({self.kind})>"


class Rule(Base):
    __tablename__ = "rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    target_kind = Column(String(20), nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    keywords = Column(JSON, nullable=False, default=list)
    priority = Column(Integer, nullable=False, default=0)  # higher wins
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_rules_priority", "priority", "created_at"),
    )

    # Relationships
    category = relationship("Category", back_populates="rules")

    def __repr__(self):
        return f"<Rule {self.id} {self.target_kind} p={self.priority} → {self.category_id}>"


class ImportBatch(Base):
    __tablename__ = "import_batches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source = Column(String(20), nullable=False, default="excel")
    original_filename = Column(String(255), nullable=True)
    hash = Column(String(64), nullable=True, index=True)  # sha256 of the uploaded file
    status = Column(String(20), nullable=False, default="pending")
    rows_count = Column(Integer, nullable=False, default=0)
    message = Column(Text, nullable=True)  # JSON report, or the error for failed batches
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    transactions = relationship("Transaction", back_populates="import_batch")

    def __repr__(self):
        return f"<ImportBatch {self.id} {self.original_filename} [{self.status}]>"


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    import_batch_id = Column(Integer, ForeignKey("import_batches.id"), nullable=True)
    rule_id = Column(Integer, ForeignKey("rules.id"), nullable=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    occurred_on = Column(Date, nullable=False)
    value_date = Column(Date, nullable=True)
    amount = Column(Float, nullable=False)  # Positive = income, negative = expense
    currency_code = Column(String(3), nullable=False, default="CHF")
    description = Column(Text, nullable=False)
    raw_description = Column(Text, nullable=True)
    balance_after = Column(Float, nullable=True)
    status = Column(String(20), nullable=False, default="real")
    created_at = Column(DateTime, default=datetime.utcnow)

    # Indexes
    __table_args__ = (
        Index("idx_transactions_account_date", "account_id", "occurred_on"),
        Index("idx_transactions_batch", "import_batch_id"),
    )

    # Relationships
    account = relationship("Account", back_populates="transactions")
    category = relationship("Category", back_populates="transactions")
    import_batch = relationship("ImportBatch", back_populates="transactions")
    rule = relationship("Rule")

    def __repr__(self):
        return f"<Transaction {self.occurred_on} {self.description[:30]} {self.amount}>"
