"""
Data Manager for Work Period Scheduling

Handles JSON persistence and CRUD operations for users, work periods,
period allocations, shift records and application settings.
"""

import copy
import json
import logging
import threading
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Any
from pathlib import Path

from .models import InvalidInputError, ShiftRecord, UserProfile, WorkPeriod, date_key

APP_VERSION = "1.0.0"
DEFAULT_NEEDED_CAPACITY = 5
DEFAULT_PERSIST_WORKERS = 8


class DataManagerError(Exception):
    """Base exception for DataManager operations"""
    pass


class DataFileCorruptedError(DataManagerError):
    """Raised when the data file is corrupted"""
    pass


class DataFileNotFoundError(DataManagerError):
    """Raised when the data file is not found"""
    pass


class DataSaveError(DataManagerError):
    """Raised when saving data fails"""
    pass


class DataValidationError(DataManagerError):
    """Raised when data validation fails"""
    pass


class RecordNotFoundError(DataManagerError):
    """Raised when a user, work period or shift id is unknown"""
    pass


def _now() -> str:
    return datetime.now().isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


class DataManager:
    """Manages all data persistence and CRUD operations"""

    def __init__(self, data_file: str = "data/schedule_data.json"):
        if data_file == "data/schedule_data.json":
            # Use path relative to the package directory
            data_file = Path(__file__).parent.parent / "data" / "schedule_data.json"
        self.data_file = Path(data_file)
        # Guards self.data; shift upserts may arrive from several threads
        self._lock = threading.RLock()
        self.data = self._load_or_create_data()

    def _load_or_create_data(self) -> Dict[str, Any]:
        """Load existing data or create default structure with recovery from backup"""
        backup_file = self.data_file.with_suffix('.bak')
        if self.data_file.exists():
            try:
                with open(self.data_file, 'r', encoding='utf-8') as f:
                    return self._validate_and_migrate_data(json.load(f))
            except (json.JSONDecodeError, IOError) as e:
                logging.error(f"Error loading main data file {self.data_file}: {e}")
                if not backup_file.exists():
                    raise DataFileCorruptedError(f"Main data file corrupted and no backup available: {e}")
                return self._recover_from_backup(backup_file)
        elif backup_file.exists():
            logging.info(f"Main data file missing, attempting recovery from backup {backup_file}")
            return self._recover_from_backup(backup_file)
        else:
            logging.info(f"No data file found, creating default data")
            return self._create_default_data()

    def _recover_from_backup(self, backup_file: Path) -> Dict[str, Any]:
        try:
            logging.info(f"Attempting recovery from backup file {backup_file}")
            with open(backup_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
            # Restore backup to main file
            backup_file.replace(self.data_file)
            logging.info(f"Successfully recovered data from backup")
            return self._validate_and_migrate_data(data)
        except (json.JSONDecodeError, IOError) as backup_e:
            logging.error(f"Backup file also corrupted: {backup_e}")
            logging.info(f"Creating default data due to corrupted files")
            return self._create_default_data()

    def _validate_and_migrate_data(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and migrate data structure to current version"""
        default_data = self._create_default_data()

        # Merge with defaults to ensure all keys exist
        for key in default_data:
            if key not in data:
                data[key] = default_data[key]
        for key, value in default_data["settings"].items():
            data["settings"].setdefault(key, value)

        # Older files stored admin status as a role name
        for user in data.get("users", []):
            if "isAdmin" not in user:
                user["isAdmin"] = user.pop("role", "user") == "admin"

        # Shift records without flags default to an empty cell
        for shift in data.get("shifts", []):
            shift.setdefault("assigned", False)
            shift.setdefault("locked", False)
            shift.setdefault("requestedOff", False)

        return data

    def _create_default_data(self) -> Dict[str, Any]:
        """Create default data structure"""
        return {
            "settings": {
                "appVersion": APP_VERSION,
                "dataFile": str(self.data_file),
                "defaultNeededCapacity": DEFAULT_NEEDED_CAPACITY,
                "persistWorkers": DEFAULT_PERSIST_WORKERS,
                "lastOpenedPeriod": None
            },
            "users": [],
            "work_periods": [],
            "work_period_users": {},  # {period_id: [user_ids]}
            "shifts": []
        }

    def _validate_saved_data(self) -> bool:
        """Validate that the saved data file matches current data"""
        try:
            if not self.data_file.exists():
                raise DataFileNotFoundError(f"Saved data file {self.data_file} does not exist")

            with open(self.data_file, 'r', encoding='utf-8') as f:
                saved_data = json.load(f)

            required_keys = ["settings", "users", "work_periods", "work_period_users", "shifts"]
            for key in required_keys:
                if key not in saved_data:
                    raise DataValidationError(f"Required section '{key}' missing from saved data")

            if saved_data.get("settings", {}).get("appVersion") != self.data.get("settings", {}).get("appVersion"):
                raise DataValidationError("App version mismatch in saved data")

            return True

        except (json.JSONDecodeError, IOError) as e:
            raise DataValidationError(f"Failed to validate saved data: {e}")

    def save_data(self) -> bool:
        """Save current data to file atomically with validation"""
        temp_file = None
        backup_file = self.data_file.with_suffix('.bak')

        with self._lock:
            try:
                self.data_file.parent.mkdir(parents=True, exist_ok=True)

                # Create backup of existing file if it exists
                if self.data_file.exists():
                    self.data_file.replace(backup_file)

                # Write to temporary file first (atomic operation)
                temp_file = self.data_file.with_suffix('.tmp')
                with open(temp_file, 'w', encoding='utf-8') as f:
                    json.dump(self.data, f, indent=2, ensure_ascii=False)

                temp_file.replace(self.data_file)
                self._validate_saved_data()
                return True

            except DataValidationError as e:
                logging.error(f"Data validation failed after save: {e}", exc_info=True)
                if backup_file.exists():
                    try:
                        backup_file.replace(self.data_file)
                    except OSError as restore_e:
                        logging.error(f"Failed to restore from backup: {restore_e}", exc_info=True)
                raise DataSaveError(f"Save operation failed validation: {e}")

            except (IOError, OSError) as e:
                logging.error(f"I/O error during save operation: {e}", exc_info=True)
                raise DataSaveError(f"Failed to save data due to I/O error: {e}")

            finally:
                if temp_file and temp_file.exists():
                    try:
                        temp_file.unlink()
                    except OSError as cleanup_e:
                        logging.error(f"Failed to clean up temporary file {temp_file}: {cleanup_e}", exc_info=True)

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy of the in-memory document, for restore() after a failed save"""
        with self._lock:
            return copy.deepcopy(self.data)

    def restore(self, snapshot: Dict[str, Any]):
        """Replace the in-memory document with an earlier snapshot()"""
        with self._lock:
            self.data = snapshot

    # User Management
    def get_users(self) -> List[UserProfile]:
        return [UserProfile.from_dict(u) for u in self.data.get("users", [])]

    def get_user(self, user_id: str) -> Optional[UserProfile]:
        for user_data in self.data.get("users", []):
            if user_data["id"] == user_id:
                return UserProfile.from_dict(user_data)
        return None

    def add_user(self, first_name: Optional[str] = None, last_name: Optional[str] = None,
                 email: Optional[str] = None, is_admin: bool = False,
                 user_id: Optional[str] = None) -> UserProfile:
        """Add new user profile"""
        with self._lock:
            user_id = user_id or _new_id()
            if self.get_user(user_id):
                raise DataValidationError(f"User {user_id} already exists")
            user = UserProfile(id=user_id, first_name=first_name, last_name=last_name,
                               email=email, is_admin=is_admin)
            self.data.setdefault("users", []).append(user.to_dict())
            return user

    def update_user(self, user_id: str, first_name: str = None, last_name: str = None,
                    email: str = None, is_admin: bool = None) -> UserProfile:
        """Update user information"""
        with self._lock:
            for user_data in self.data.get("users", []):
                if user_data["id"] != user_id:
                    continue
                if first_name is not None:
                    user_data["firstName"] = first_name
                if last_name is not None:
                    user_data["lastName"] = last_name
                if email is not None:
                    user_data["email"] = email
                if is_admin is not None:
                    user_data["isAdmin"] = is_admin
                return UserProfile.from_dict(user_data)
        raise RecordNotFoundError(f"User {user_id} not found")

    def delete_user(self, user_id: str) -> bool:
        """Delete user (hard delete) along with allocations and shifts"""
        with self._lock:
            users = self.data.get("users", [])
            remaining = [u for u in users if u["id"] != user_id]
            if len(remaining) == len(users):
                return False
            self.data["users"] = remaining
            for allocated in self.data.get("work_period_users", {}).values():
                if user_id in allocated:
                    allocated.remove(user_id)
            self.data["shifts"] = [s for s in self.data.get("shifts", []) if s["userId"] != user_id]
            return True

    # Work Period Management
    def _validated_period(self, period: WorkPeriod) -> WorkPeriod:
        period.validate()
        if not period.name or not period.name.strip():
            raise InvalidInputError("Name is required")
        if period.needed_capacity < 1:
            raise InvalidInputError("Capacity must be at least 1")
        return period

    def get_work_periods(self) -> List[WorkPeriod]:
        periods = [WorkPeriod.from_dict(p) for p in self.data.get("work_periods", [])]
        return sorted(periods, key=lambda p: (p.start_date, p.name))

    def get_work_period(self, period_id: str) -> WorkPeriod:
        for period_data in self.data.get("work_periods", []):
            if period_data["id"] == period_id:
                return WorkPeriod.from_dict(period_data)
        raise RecordNotFoundError(f"Work period {period_id} not found")

    def create_work_period(self, name: str, start_date, end_date,
                           needed_capacity: Optional[int] = None) -> WorkPeriod:
        """
        Create a work period.

        Raises:
            InvalidInputError: empty name, end before start or capacity below 1
        """
        if needed_capacity is None:
            needed_capacity = self.get_setting("defaultNeededCapacity", DEFAULT_NEEDED_CAPACITY)
        period = self._validated_period(WorkPeriod(
            id=_new_id(),
            name=name,
            start_date=start_date,
            end_date=end_date,
            needed_capacity=needed_capacity,
            created_at=_now(),
            updated_at=_now()
        ))
        with self._lock:
            self.data.setdefault("work_periods", []).append(period.to_dict())
            self.data.setdefault("work_period_users", {})[period.id] = []
        logging.info(f"Created work period {period.id} ({period.name})")
        return period

    def update_work_period(self, period_id: str, name: str = None, start_date=None,
                           end_date=None, needed_capacity: int = None) -> WorkPeriod:
        """Update name, dates or capacity of a work period"""
        with self._lock:
            period = self.get_work_period(period_id)
            if name is not None:
                period.name = name
            if start_date is not None:
                period.start_date = start_date
            if end_date is not None:
                period.end_date = end_date
            if needed_capacity is not None:
                period.needed_capacity = needed_capacity
            period.updated_at = _now()
            self._validated_period(period)

            periods = self.data["work_periods"]
            for i, period_data in enumerate(periods):
                if period_data["id"] == period_id:
                    periods[i] = period.to_dict()
            return period

    def delete_work_period(self, period_id: str) -> bool:
        """Delete work period with its allocations and shifts"""
        with self._lock:
            periods = self.data.get("work_periods", [])
            remaining = [p for p in periods if p["id"] != period_id]
            if len(remaining) == len(periods):
                return False
            self.data["work_periods"] = remaining
            self.data.get("work_period_users", {}).pop(period_id, None)
            self.data["shifts"] = [s for s in self.data.get("shifts", []) if s["workPeriodId"] != period_id]
            return True

    # Allocation Management
    def get_period_user_ids(self, period_id: str) -> List[str]:
        return list(self.data.get("work_period_users", {}).get(period_id, []))

    def get_period_users(self, period_id: str) -> List[UserProfile]:
        """Users allocated to a period, in allocation order"""
        users = []
        for user_id in self.get_period_user_ids(period_id):
            user = self.get_user(user_id)
            if user:
                users.append(user)
            else:
                logging.warning(f"Allocated user {user_id} of period {period_id} has no profile")
        return users

    def allocate_user(self, period_id: str, user_id: str) -> bool:
        """Allocate a user to a period; False if already allocated"""
        with self._lock:
            self.get_work_period(period_id)
            if not self.get_user(user_id):
                raise RecordNotFoundError(f"User {user_id} not found")
            allocated = self.data.setdefault("work_period_users", {}).setdefault(period_id, [])
            if user_id in allocated:
                return False
            allocated.append(user_id)
            return True

    def remove_user_from_period(self, period_id: str, user_id: str) -> bool:
        """Remove a user from a period and delete their shifts in it"""
        with self._lock:
            allocated = self.data.get("work_period_users", {}).get(period_id, [])
            if user_id not in allocated:
                return False
            allocated.remove(user_id)
            self.data["shifts"] = [
                s for s in self.data.get("shifts", [])
                if not (s["workPeriodId"] == period_id and s["userId"] == user_id)
            ]
            return True

    # Shift Management
    def get_shifts(self, period_id: str) -> List[ShiftRecord]:
        return [ShiftRecord.from_dict(s) for s in self.data.get("shifts", []) if s["workPeriodId"] == period_id]

    def get_shift(self, record_id: str) -> Optional[ShiftRecord]:
        for shift_data in self.data.get("shifts", []):
            if shift_data["id"] == record_id:
                return ShiftRecord.from_dict(shift_data)
        return None

    def find_shift(self, period_id: str, user_id: str, shift_date) -> Optional[ShiftRecord]:
        key = date_key(shift_date)
        for shift_data in self.data.get("shifts", []):
            if (shift_data["workPeriodId"] == period_id and shift_data["userId"] == user_id
                    and shift_data["shiftDate"] == key):
                return ShiftRecord.from_dict(shift_data)
        return None

    def create_shift(self, period_id: str, user_id: str, shift_date, assigned: bool = False,
                     locked: bool = False, requested_off: bool = False) -> ShiftRecord:
        with self._lock:
            record = ShiftRecord(
                id=_new_id(),
                work_period_id=period_id,
                user_id=user_id,
                shift_date=shift_date,
                assigned=assigned,
                locked=locked,
                requested_off=requested_off,
                created_at=_now(),
                updated_at=_now()
            )
            self.data.setdefault("shifts", []).append(record.to_dict())
            return record

    def update_shift(self, record_id: str, **updates) -> ShiftRecord:
        """Update flags of an existing shift record (assigned, locked, requested_off)"""
        field_names = {"assigned": "assigned", "locked": "locked", "requested_off": "requestedOff"}
        unknown = set(updates) - set(field_names)
        if unknown:
            raise DataValidationError(f"Unknown shift fields: {', '.join(sorted(unknown))}")
        with self._lock:
            for shift_data in self.data.get("shifts", []):
                if shift_data["id"] == record_id:
                    for name, value in updates.items():
                        shift_data[field_names[name]] = bool(value)
                    shift_data["updatedAt"] = _now()
                    return ShiftRecord.from_dict(shift_data)
        raise RecordNotFoundError(f"Shift {record_id} not found")

    def upsert_shift(self, period_id: str, user_id: str, shift_date, assigned: bool = False,
                     locked: bool = False, requested_off: bool = False,
                     record_id: Optional[str] = None) -> ShiftRecord:
        """Update the record for (period, user, date), creating it when absent"""
        with self._lock:
            existing = self.get_shift(record_id) if record_id else self.find_shift(period_id, user_id, shift_date)
            if existing is None and record_id:
                raise RecordNotFoundError(f"Shift {record_id} not found")
            if existing:
                return self.update_shift(existing.id, assigned=assigned, locked=locked,
                                         requested_off=requested_off)
            return self.create_shift(period_id, user_id, shift_date, assigned=assigned,
                                     locked=locked, requested_off=requested_off)

    def count_requested_off(self, period_id: str) -> int:
        return sum(1 for s in self.get_shifts(period_id) if s.requested_off)

    # Settings Management
    def get_setting(self, key: str, default=None):
        """Get application setting"""
        return self.data.get("settings", {}).get(key, default)

    def set_setting(self, key: str, value):
        """Set application setting"""
        with self._lock:
            self.data.setdefault("settings", {})[key] = value
