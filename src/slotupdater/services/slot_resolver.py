"""Slot resolver: map the current root partition to a slot and its complement."""

import logging

from slotupdater.errors import UnknownSlotError
from slotupdater.models.slot import Disk, Slot, SlotPlan


class SlotResolver:
    """Computes the target slot for an update from the booted root partition."""

    def __init__(self):
        self.logger = logging.getLogger("slotupdater.slot_resolver")

    def current_slot(self, disk: Disk, current_root: str) -> Slot:
        """Return the slot whose root partition is ``current_root``.

        Raises:
            UnknownSlotError: If ``current_root`` is not partition 2 or 4 of
                ``disk``. The layout is never guessed.
        """
        index = disk.partition_index(current_root)
        slot = Slot.from_root_index(index) if index is not None else None
        if slot is None:
            expected = " or ".join(disk.partition(s.root_index) for s in Slot)
            raise UnknownSlotError(
                f"Cannot determine current slot from {current_root}, expected {expected}"
            )
        return slot

    def resolve(self, disk: Disk, current_root: str) -> SlotPlan:
        """Resolve current and target slot for ``current_root`` on ``disk``.

        Args:
            disk: Disk holding the six-partition layout
            current_root: Raw partition currently mounted as ``/``

        Returns:
            SlotPlan with the target root and verity partitions

        Raises:
            UnknownSlotError: If the current root matches neither slot
        """
        current = self.current_slot(disk, current_root)
        target = current.other
        plan = SlotPlan(
            disk=disk,
            current_slot=current,
            current_root=current_root,
            target_slot=target,
            target_root=disk.partition(target.root_index),
            target_verity=disk.partition(target.verity_index),
        )
        self.logger.info(f"Current slot: {current.value}")
        self.logger.info(
            f"Writing to slot: {target.value} ({plan.target_root}, {plan.target_verity})"
        )
        return plan
