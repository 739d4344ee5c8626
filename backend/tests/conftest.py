from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base, SQLITE_SCHEMA_MAP
from app.modules.allowance import models as allowance_models  # noqa: F401
from app.modules.allowance.models import Child, Family
from app.modules.auth import models as auth_models  # noqa: F401
from app.modules.auth.deps import UserContext
from app.modules.auth.models import User, UserModuleRole
from app.modules.notifications import models as notifications_models  # noqa: F401


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        execution_options={"schema_translate_map": SQLITE_SCHEMA_MAP},
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    session = Session()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


def AddUser(db, username: str, role: str, family_id: int | None, module_role: str | None = None) -> User:
    user = User(Username=username, FirstName=username.title(), FamilyId=family_id, Role=role, IsActive=True)
    db.add(user)
    db.flush()
    if module_role:
        db.add(UserModuleRole(UserId=user.Id, ModuleName="allowance", Role=module_role))
    db.commit()
    return user


def AddChild(db, family_id: int, username: str = "kid", **overrides) -> Child:
    user = AddUser(db, username, "Child", family_id, module_role="Child")
    data = {
        "UserId": user.Id,
        "FamilyId": family_id,
        "WeeklyAllowance": Decimal("10.00"),
        "CurrentBalance": Decimal("0.00"),
        "SavingsBalance": Decimal("0.00"),
        "SavingsTransferType": "None",
        "SavingsTransferAmount": Decimal("0.00"),
        "SavingsTransferPercentage": 0,
        "AllowancePaused": False,
        "AllowDebt": False,
        "IsActive": True,
    }
    data.update(overrides)
    child = Child(**data)
    db.add(child)
    db.commit()
    return child


def ContextFor(user: User, role: str) -> UserContext:
    return UserContext(Id=user.Id, Username=user.Username, Roles={"allowance": role}, FamilyId=user.FamilyId)


@pytest.fixture
def family(db):
    record = Family(Name="Test family")
    db.add(record)
    db.commit()
    return record


@pytest.fixture
def parent(db, family):
    return AddUser(db, "parent", "Parent", family.Id, module_role="Parent")


@pytest.fixture
def child(db, family, parent):
    return AddChild(db, family.Id)
