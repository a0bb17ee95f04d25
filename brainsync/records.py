"""
Typed record models for the application's collections.

Documents cross the store boundary as flat JSON dicts. These pydantic models
give modules typed access to them: the shared metadata (id, ownerId,
createdAt, updatedAt) lives on Record, and each module adds its own fields.
Unknown fields are kept, so a model never drops data written by a newer
version of a module.
"""

from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field


class Record(BaseModel):
    """Base for every stored document."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    collection_name: ClassVar[str] = ""

    id: Optional[str] = None
    owner_id: Optional[str] = Field(default=None, alias="ownerId")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Record":
        return cls.model_validate(data)

    def to_payload(self) -> dict[str, Any]:
        """Wire form: camelCase keys, no id, unset metadata omitted."""
        return self.model_dump(by_alias=True, exclude={"id"}, exclude_none=True)


class Note(Record):
    collection_name: ClassVar[str] = "notes"

    title: str = ""
    content: str = ""
    tags: list[str] = Field(default_factory=list)
    pinned: bool = False


class Task(Record):
    collection_name: ClassVar[str] = "tasks"

    title: str = ""
    description: str = ""
    status: str = "todo"
    priority: str = "medium"
    due_date: Optional[str] = Field(default=None, alias="dueDate")
    project_id: Optional[str] = Field(default=None, alias="projectId")
    completed: bool = False


class Project(Record):
    collection_name: ClassVar[str] = "projects"

    name: str = ""
    description: str = ""
    status: str = "active"
    budget: float = 0.0
    funded: float = 0.0


class Transaction(Record):
    collection_name: ClassVar[str] = "transactions"

    amount: float = 0.0
    type: str = "expense"
    category: str = "general"
    description: str = ""
    date: Optional[str] = None


class Habit(Record):
    collection_name: ClassVar[str] = "habits"

    name: str = ""
    description: str = ""
    category: str = "general"
    target: int = 1
    unit: str = "times"
    color: Optional[str] = None
    is_active: bool = Field(default=True, alias="isActive")


class Goal(Record):
    collection_name: ClassVar[str] = "goals"

    title: str = ""
    description: str = ""
    target_date: Optional[str] = Field(default=None, alias="targetDate")
    progress: float = 0.0
    status: str = "active"


RECORD_TYPES: dict[str, type[Record]] = {
    cls.collection_name: cls
    for cls in (Note, Task, Project, Transaction, Habit, Goal)
}


def record_type(collection: str) -> type[Record]:
    """Model for a collection; plain Record for collections without one."""
    return RECORD_TYPES.get(collection, Record)
