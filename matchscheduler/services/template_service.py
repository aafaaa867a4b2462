"""Availability templates and the weekly recurring auto-apply"""
from dataclasses import dataclass, field
from typing import Callable, List

from ..errors import FailedPreconditionError, NotFoundError, ValidationError
from ..storage.database import Database
from ..storage.models import Template, UserProfile
from ..utils.logger import setup_logger
from ..utils.slots import is_valid_slot_id
from ..utils.timezone import now_utc
from ..utils.weeks import compare_week_ids, current_week_id, next_week_id, parse_week_id
from .availability_service import AvailabilityService

logger = setup_logger(__name__)

MAX_TEMPLATE_SLOTS = 63  # 7 days x 9 grid rows


@dataclass
class RecurringSweepResult:
    week_id: str
    users_checked: int = 0
    users_processed: int = 0
    slots_applied: int = 0
    failed_users: List[str] = field(default_factory=list)


class TemplateService:
    """Saves templates and writes them into weekly availability"""

    def __init__(self, database: Database, availability: AvailabilityService, clock: Callable = now_utc):
        """
        Initialize template service

        Args:
            database: Document store holding users and availability
            availability: The availability write path
            clock: Returns the current UTC instant
        """
        self.database = database
        self.availability = availability
        self.clock = clock

    def _get_user(self, user_id: str) -> UserProfile:
        user = self.database.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found", detail={"user_id": user_id})
        return user

    def save_template(self, user_id: str, slots: List[str]) -> Template:
        """
        Save (or overwrite) a user's template

        Duplicate slots are dropped keeping the first occurrence. The recurring
        flag and the last applied week survive an overwrite.
        """
        if not isinstance(slots, (list, tuple)) or not slots:
            raise ValidationError("At least one slot is required")
        if len(slots) > MAX_TEMPLATE_SLOTS:
            raise ValidationError(f"Maximum {MAX_TEMPLATE_SLOTS} slots allowed")
        for slot_id in slots:
            if not is_valid_slot_id(slot_id):
                raise ValidationError(f"Invalid slot format: {slot_id}")

        user = self._get_user(user_id)
        existing = user.template or Template()
        template = Template(
            slots=list(dict.fromkeys(slots)),
            recurring=existing.recurring,
            last_applied_week_id=existing.last_applied_week_id,
            updated_at=self.clock(),
        )
        self.database.save_template(user_id, template)
        logger.info(f"Template saved for user {user_id}: {len(template.slots)} slots")
        return template

    def clear_template(self, user_id: str):
        self._get_user(user_id)
        self.database.save_template(user_id, None)
        logger.info(f"Template cleared for user {user_id}")

    def apply_template_to_week(self, user_id: str, template_slots: List[str], team_id: str, week_id: str) -> int:
        """
        Write a template into one team's week

        Nothing is written if the user already appears in any slot of that
        week; manual edits win for the whole week.

        Returns:
            Number of slots written (0 when skipped)
        """
        parse_week_id(week_id)

        try:
            with self.database.transaction():
                record = self.database.get_availability(team_id, week_id)
                if record is not None and record.has_user(user_id):
                    logger.debug(f"Skipping template for {user_id} in {team_id}_{week_id}: already edited")
                    return 0

                for slot_id in template_slots:
                    self.availability.save_slot_update(team_id, week_id, slot_id, user_id, "add")
        except Exception:
            # rolled back; drop the cached copy written mid-transaction
            self.availability.invalidate(team_id, week_id)
            raise

        return len(template_slots)

    def set_recurring(self, user_id: str, enabled: bool) -> int:
        """
        Turn weekly auto-apply on or off

        Enabling applies the template right away to the current and the next
        week of every team the user is on. Disabling leaves written slots alone.

        Returns:
            Number of slots applied
        """
        if not isinstance(enabled, bool):
            raise ValidationError("recurring must be a boolean")

        user = self._get_user(user_id)
        template = user.template
        if template is None or not template.slots:
            raise FailedPreconditionError("Save a template first")

        now = self.clock()
        applied = 0
        if enabled:
            current_week, next_week = current_week_id(now), next_week_id(now)
            for team_id in user.team_ids:
                applied += self.apply_template_to_week(user_id, template.slots, team_id, current_week)
                applied += self.apply_template_to_week(user_id, template.slots, team_id, next_week)
            template.last_applied_week_id = next_week

        template.recurring = enabled
        template.updated_at = now
        self.database.save_template(user_id, template)

        if enabled:
            logger.info(f"Recurring ON for {user_id}: applied {applied} slots across {len(user.team_ids)} teams")
        else:
            logger.info(f"Recurring OFF for {user_id}")
        return applied

    def apply_recurring_templates(self) -> RecurringSweepResult:
        """Weekly sweep: apply every recurring template to the new next week"""
        new_next_week = next_week_id(self.clock())
        users = self.database.get_users_with_recurring_templates()
        result = RecurringSweepResult(week_id=new_next_week, users_checked=len(users))
        logger.info(f"Recurring sweep: {len(users)} users with recurring templates")

        for user in users:
            template = user.template
            if not template.slots:
                continue

            try:
                last_applied = template.last_applied_week_id
                if last_applied and compare_week_ids(last_applied, new_next_week) >= 0:
                    continue

                applied = 0
                for team_id in user.team_ids:
                    applied += self.apply_template_to_week(user.id, template.slots, team_id, new_next_week)

                template.last_applied_week_id = new_next_week
                template.updated_at = self.clock()
                self.database.save_template(user.id, template)
            except Exception as e:
                logger.error(f"Recurring sweep failed for user {user.id}: {e}", exc_info=True)
                result.failed_users.append(user.id)
                continue

            result.slots_applied += applied
            result.users_processed += 1

        logger.info(
            f"Recurring sweep complete: {result.users_processed} users, "
            f"{result.slots_applied} slots applied, {len(result.failed_users)} failed"
        )
        return result
