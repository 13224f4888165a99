# models/affiliate_program.py
"""
AffiliateProgram model - merchant partner configuration.
Edited by admin tooling only; read-only for the tracking core.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Boolean, Text
from models.base import Base, AuditMixin


class AffiliateProgram(Base, AuditMixin):
    __tablename__ = 'affiliate_programs'

    programID = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, unique=True, nullable=False)  # slug used in postback urls
    displayName = Column(String, nullable=True)
    network = Column(String, default="direct")  # direct, awin, affilae, cj, amazon, custom

    # Redirect templating
    redirectTemplate = Column(Text, nullable=False)  # {BASE_URL}?tag={AFFILIATE_TAG}&subid={SUB_ID}
    baseUrl = Column(String, nullable=True)
    subIdParam = Column(String, nullable=True)  # Name of the tracking param the merchant expects
    subIdFormat = Column(String, nullable=True)  # Must contain {REF}
    publisherID = Column(String, nullable=True)  # Network-assigned publisher id / affiliate tag
    merchantID = Column(String, nullable=True)  # Network-assigned merchant id

    # Rates, in percent
    networkCommissionRate = Column(DECIMAL(5, 2), default=0)  # commission paid by the network on amount
    buyerCashbackRate = Column(DECIMAL(5, 2), default=0)  # cashback credited to the buyer on amount

    # Reconciliation
    postbackSecret = Column(String, nullable=True)
    isActive = Column(Boolean, default=True)

    def __repr__(self):
        return f"<AffiliateProgram(programID={self.programID}, name={self.name}, network={self.network})>"
