from sqlalchemy import Column, Integer, String, DECIMAL, Boolean
from sqlalchemy.orm import relationship
from models.base import Base


class Package(Base):
    __tablename__ = 'packages'

    packageID = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    priceUsd = Column(DECIMAL(12, 2), nullable=False)
    hashrateThs = Column(DECIMAL(12, 2), default=0)
    bvPercent = Column(DECIMAL(5, 2), nullable=True)  # NULL - глобальный процент Ghost BV
    commissionUnlockLevel = Column(Integer, nullable=True)  # NULL - по цене пакета
    isActive = Column(Boolean, default=True)

    purchases = relationship('Purchase', back_populates='package')

    def __repr__(self):
        return f"<Package(packageID={self.packageID}, name={self.name}, price={self.priceUsd})>"
