"""AppUser model - retailers, sellers and guest accounts."""
from sqlalchemy import Column, String, Boolean, DateTime, Text
from sqlalchemy.sql import func
from werkzeug.security import generate_password_hash, check_password_hash
from checkout.database import Base, BigIntPK


class UserType:
    """Account roles."""
    RETAILER = 'retailer'
    SELLER = 'seller'
    ADMIN = 'admin'


class AppUser(Base):
    """Platform account. Phone is the identity used by guest checkout."""

    __tablename__ = 'app_user'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    phone = Column(String(20), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=True)
    full_name = Column(String(200), nullable=False)
    business_name = Column(String(200), nullable=True)
    user_type = Column(String(20), nullable=False, default=UserType.RETAILER)
    is_guest = Column(Boolean, nullable=False, default=False)
    active = Column(Boolean, nullable=False, default=True)

    # Address (delivery address for retailers, pickup address for sellers)
    address = Column(Text, nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    pincode = Column(String(10), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def set_password(self, password):
        """Set password hash."""
        self.password_hash = generate_password_hash(password, method='scrypt')

    def check_password(self, password):
        """Check password against hash."""
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    @property
    def display_name(self):
        return self.business_name or self.full_name

    def __repr__(self):
        return f"<AppUser(id={self.id}, phone='{self.phone}', type='{self.user_type}')>"
