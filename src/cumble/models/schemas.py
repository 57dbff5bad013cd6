# src/cumble/models/schemas.py
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Optional


class UserRecord(BaseModel):
    """A user as returned by the user-listing collaborator (read-only)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = Field(default=None, alias="_id")
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    country: Optional[str] = None
    state: Optional[str] = None
    city: str = ""
    neighborhoods: List[str] = []  # ordered; only [0] is used for mapping

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, v):
        """Document ids may arrive as ObjectId-like values"""
        if v is None:
            return None
        return str(v)

    @field_validator("first_name", "last_name", "email", "city", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else v

    @field_validator("neighborhoods", mode="before")
    @classmethod
    def normalize_neighborhoods(cls, v):
        if v is None or v == "":
            return []
        if isinstance(v, str):
            return [v]
        return v

    @property
    def primary_neighborhood(self) -> Optional[str]:
        return self.neighborhoods[0] if self.neighborhoods else None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def username(self) -> str:
        """Local part of the institutional email."""
        return self.email.split("@")[0]

    @property
    def profile_url(self) -> str:
        return f"/user/{self.username}"

    def to_listing(self) -> Dict[str, Any]:
        """Sanitized fields exposed by GET /api/users"""
        return {
            "_id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "country": self.country,
            "city": self.city,
            "neighborhoods": self.neighborhoods,
        }

    def to_list_row(self) -> Dict[str, Any]:
        """Listing fields plus state, for the searchable list view."""
        return {**self.to_listing(), "state": self.state}


class ProfileData(BaseModel):
    """Profile document as edited on /profile/edit and stored by firebase_id."""

    model_config = ConfigDict(extra="allow")

    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone_number: str = ""
    country: str = "USA"
    state: str = ""
    city: str = ""
    neighborhoods: List[str] = []
    looking_for_roommate: bool = False
    looking_for_friend: bool = False
    start_date: str = ""  # ISO date, free-form in the form
    end_date: str = ""
    other_notes: Optional[str] = None
    firebase_id: Optional[str] = None
    profile_picture: Optional[str] = None  # data URL of a square JPEG

    @field_validator("neighborhoods", mode="before")
    @classmethod
    def drop_blank_neighborhoods(cls, v):
        """The form appends empty rows; they are not neighborhoods"""
        if v is None:
            return []
        return [n for n in v if isinstance(n, str) and n.strip()]

    def with_location(
        self, state: Optional[str] = None, city: Optional[str] = None
    ) -> "ProfileData":
        """
        Return a copy with a new state and/or city.

        Changing the state clears city and neighborhoods; changing the city
        clears neighborhoods, since both are scoped to their parent.
        """
        update: Dict[str, Any] = {}
        if state is not None and state != self.state:
            update.update(state=state, city="", neighborhoods=[])
        if city is not None and city != (update.get("city", self.city)):
            update.update(city=city, neighborhoods=[])
        return self.model_copy(update=update)


class ProfileLookup(BaseModel):
    success: bool = True
    exists: bool
    profile: Optional[Dict[str, Any]] = None
