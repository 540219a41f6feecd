from typing import Optional, List
from sqlmodel import Field, SQLModel, Relationship
from enum import Enum
from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Index, JSON, Numeric, UniqueConstraint, text

class GroupType(str, Enum):
    FAMILY = "FAMILY"
    OTHER = "OTHER"

class UserRole(str, Enum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"

class UserStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"

class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER_OUT = "transfer_out"

class TransactionCategory(str, Enum):
    FOOD = "food"
    GROCERIES = "groceries"
    TRANSPORT = "transport"
    BILLS = "bills"
    FUN = "fun"
    CLOTHES = "clothes"
    HEALTH = "health"
    EDUCATION = "education"
    OTHER = "other"
    SAVINGS = "savings"
    BONUS = "bonus"
    ALLOWANCE = "allowance"
    SALARY = "salary"
    LOANS = "loans"

class BudgetCategory(str, Enum):
    FOOD = "food"
    GROCERIES = "groceries"
    TRANSPORT = "transport"
    BILLS = "bills"
    FUN = "fun"
    CLOTHES = "clothes"
    HEALTH = "health"
    EDUCATION = "education"
    OTHER = "other"

# system-generated income counted as "allocations" in the group budget view
ALLOCATION_CATEGORIES = (
    TransactionCategory.ALLOWANCE,
    TransactionCategory.SALARY,
    TransactionCategory.BONUS,
)

class GoalStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"

class TaskStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    COMPLETED_SELF = "completed_self"
    APPROVED = "approved"

class LoanStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    REJECTED = "rejected"
    PAID = "paid"

class QuizType(str, Enum):
    MATH = "math"
    READING = "reading"
    FINANCIAL = "financial"
    GENERAL = "general"

class AssignmentStatus(str, Enum):
    ASSIGNED = "assigned"
    COMPLETED = "completed"
    FAILED = "failed"
    LATE = "late"

class ShoppingItemStatus(str, Enum):
    PENDING = "pending"
    IN_CART = "in_cart"
    BOUGHT = "bought"


class Group(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    admin_email: str = Field(unique=True, index=True)
    type: GroupType = Field(default=GroupType.FAMILY)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    members: List["User"] = Relationship(
        back_populates="group",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"}
    )

class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="group.id", index=True)
    nickname: str
    password_hash: str

    role: UserRole = Field(default=UserRole.MEMBER)
    status: UserStatus = Field(default=UserStatus.PENDING)
    birth_year: Optional[int] = Field(default=None)

    balance: Decimal = Field(default=Decimal("0.00"), sa_column=Column(Numeric(10, 2), nullable=False))
    allowance_amount: Decimal = Field(default=Decimal("0.00"), sa_column=Column(Numeric(10, 2), nullable=False))
    interest_rate: Decimal = Field(default=Decimal("0.00"), sa_column=Column(Numeric(5, 2), nullable=False))

    created_at: datetime = Field(default_factory=datetime.utcnow)
    last_login: Optional[datetime] = Field(default=None)

    group: Optional[Group] = Relationship(back_populates="members")

class Transaction(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)

    # always positive, the sign comes from ``type``
    amount: Decimal = Field(sa_column=Column(Numeric(10, 2), nullable=False))

    description: str
    category: TransactionCategory
    type: TransactionType
    is_manual: bool = Field(default=False)
    timestamp: datetime = Field(default_factory=datetime.utcnow, index=True)

class Goal(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    group_id: int = Field(foreign_key="group.id")
    title: str

    target_amount: Decimal = Field(sa_column=Column(Numeric(10, 2), nullable=False))
    current_amount: Decimal = Field(default=Decimal("0.00"), sa_column=Column(Numeric(10, 2), nullable=False))

    status: GoalStatus = Field(default=GoalStatus.ACTIVE)
    created_at: datetime = Field(default_factory=datetime.utcnow)

class Budget(SQLModel, table=True):
    # NULL user_id never collides under the constraint, so group-wide rows get their own index
    __table_args__ = (
        UniqueConstraint("group_id", "user_id", "category"),
        Index(
            "uq_budget_group_default",
            "group_id", "category",
            unique=True,
            postgresql_where=text("user_id IS NULL"),
            sqlite_where=text("user_id IS NULL"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="group.id", index=True)
    # NULL means the group-wide default
    user_id: Optional[int] = Field(default=None, foreign_key="user.id")
    category: BudgetCategory
    limit_amount: Decimal = Field(default=Decimal("0.00"), sa_column=Column(Numeric(10, 2), nullable=False))

class Task(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="group.id", index=True)
    title: str

    reward: Decimal = Field(default=Decimal("0.00"), sa_column=Column(Numeric(10, 2), nullable=False))

    status: TaskStatus = Field(default=TaskStatus.PENDING)
    assigned_to: int = Field(foreign_key="user.id")
    created_by: Optional[int] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

class Loan(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    group_id: int = Field(foreign_key="group.id")

    original_amount: Decimal = Field(sa_column=Column(Numeric(10, 2), nullable=False))
    remaining_amount: Decimal = Field(sa_column=Column(Numeric(10, 2), nullable=False))

    reason: str = ""
    status: LoanStatus = Field(default=LoanStatus.PENDING)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    decided_at: Optional[datetime] = Field(default=None)

class QuizBundle(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    type: QuizType = Field(default=QuizType.GENERAL)
    age_group: Optional[str] = Field(default=None, index=True)

    reward: Decimal = Field(default=Decimal("0.00"), sa_column=Column(Numeric(10, 2), nullable=False))
    threshold: int = Field(default=80)

    text_content: Optional[str] = None
    # ordered list of {"prompt": str, "options": [str], "correct": int}
    questions: List[dict] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))

class UserAssignment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    bundle_id: int = Field(foreign_key="quizbundle.id")

    status: AssignmentStatus = Field(default=AssignmentStatus.ASSIGNED)
    score: Optional[int] = Field(default=None)

    custom_reward: Optional[Decimal] = Field(default=None, sa_column=Column(Numeric(10, 2), nullable=True))
    reward_earned: Decimal = Field(default=Decimal("0.00"), sa_column=Column(Numeric(10, 2), nullable=False))
    deadline: Optional[datetime] = Field(default=None)

    assigned_by: Optional[int] = Field(default=None, foreign_key="user.id")
    assigned_at: datetime = Field(default_factory=datetime.utcnow)
    submitted_at: Optional[datetime] = Field(default=None)

class ShoppingItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="group.id", index=True)
    item_name: str
    quantity: int = Field(default=1)

    requester_id: int = Field(foreign_key="user.id")
    requester_name: str

    status: ShoppingItemStatus = Field(default=ShoppingItemStatus.PENDING)
    est_price: Optional[Decimal] = Field(default=None, sa_column=Column(Numeric(10, 2), nullable=True))
    created_at: datetime = Field(default_factory=datetime.utcnow)

class ShoppingTrip(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="group.id", index=True)
    user_id: int = Field(foreign_key="user.id")
    nickname: str
    store_name: str
    trip_date: datetime = Field(default_factory=datetime.utcnow)

    total_amount: Decimal = Field(sa_column=Column(Numeric(10, 2), nullable=False))
    transaction_id: Optional[int] = Field(default=None, foreign_key="transaction.id")

    items: List["ShoppingTripItem"] = Relationship(
        back_populates="trip",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "lazy": "selectin"}
    )

class ShoppingTripItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    trip_id: int = Field(foreign_key="shoppingtrip.id", index=True)
    item_name: str
    quantity: int = Field(default=1)
    price: Optional[Decimal] = Field(default=None, sa_column=Column(Numeric(10, 2), nullable=True))

    trip: Optional[ShoppingTrip] = Relationship(back_populates="items")
