# tollplaza/models/account.py
"""
Customer accounts and bundle subscriptions (account/bundle collaborator).
A subscription with passage_limit NULL is unlimited.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from tollplaza.database import Base


class Account(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)

    def __repr__(self):
        return f"<Account {self.id} {self.name}>"


class BundleSubscription(Base):
    __tablename__ = "bundle_subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    status = Column(String(20), default="active", nullable=False)  # active | pending | expired
    start_datetime = Column(DateTime, nullable=False)
    end_datetime = Column(DateTime, nullable=False)
    passage_limit = Column(Integer)
    passages_used = Column(Integer, default=0, nullable=False)

    def has_remaining_passages(self) -> bool:
        return self.passage_limit is None or (self.passages_used or 0) < self.passage_limit

    def __repr__(self):
        return f"<BundleSubscription {self.id} account={self.account_id} status={self.status}>"
