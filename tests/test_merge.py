"""
Tests for merge_entitlements.

Covers local-purchase flags, token backfill, the prepaid flag and retention of records owned
by another account that are still on the device.
"""

from conftest import BASIC, ONE_TIME, PREMIUM, create_purchase, create_record
from entitlement_sync.models.domain import DevicePurchase, EntitlementRecord
from entitlement_sync.services.reconciliation import merge_entitlements


def _foreign(product: str = BASIC, token: str = "T2") -> EntitlementRecord:
    return EntitlementRecord.already_owned(product, token)


class TestLocalFlags:
    """Tests for is_local_purchase and token backfill."""

    def test_device_purchase_marks_record_local(self):
        """Registering a device purchase yields a local record."""
        remote = [create_record(BASIC, "T1", is_acknowledged=False)]

        merged = merge_entitlements([], remote, [create_purchase(BASIC, "T1")])

        assert len(merged) == 1
        assert merged[0].is_local_purchase
        assert merged[0].purchase_token == "T1"
        assert merged[0].is_entitlement_active

    def test_device_token_wins(self):
        """The device token replaces the remote one."""
        remote = [create_record(BASIC, "OLD")]

        merged = merge_entitlements([], remote, [create_purchase(BASIC, "NEW")])

        assert merged[0].purchase_token == "NEW"

    def test_record_without_device_purchase_is_not_local(self):
        """A record bought elsewhere is not local and keeps its token."""
        remote = [create_record(PREMIUM, "T9", is_local_purchase=True)]

        merged = merge_entitlements([], remote, [create_purchase(BASIC, "T1")])

        assert not merged[0].is_local_purchase
        assert merged[0].purchase_token == "T9"

    def test_bundled_purchase_matches_any_product(self):
        """A purchase covering several products marks each of them local."""
        bundle = DevicePurchase(products=(BASIC, ONE_TIME), purchase_token="B1")
        remote = [create_record(BASIC, None), create_record(ONE_TIME, None)]

        merged = merge_entitlements([], remote, [bundle])

        assert all(record.is_local_purchase for record in merged)
        assert {record.purchase_token for record in merged} == {"B1"}

    def test_record_without_product_is_kept(self):
        """Records with no product are passed through, never local."""
        remote = [create_record(None, None)]

        merged = merge_entitlements([], remote, [create_purchase()])

        assert merged == [create_record(None, None)]


class TestNullRemote:
    """Tests for passes without fresh remote data."""

    def test_refreshes_flags_of_stored_list(self):
        """With no remote list the stored list is re-flagged."""
        old_local = [create_record(BASIC, "T1", is_local_purchase=True)]

        merged = merge_entitlements(old_local, None, [])

        assert merged == [create_record(BASIC, "T1", is_local_purchase=False)]

    def test_empty_everything(self):
        assert merge_entitlements([], None, []) == []

    def test_empty_remote_list_is_fresh_data(self):
        """An empty remote list drops stored records that are not retained."""
        old_local = [create_record(BASIC, "T1")]

        assert merge_entitlements(old_local, [], [create_purchase(BASIC, "T1")]) == []


class TestRetention:
    """Tests for the retention of foreign records still on the device."""

    def test_foreign_record_on_device_is_retained(self):
        """An already-owned record survives a remote list that omits it."""
        foreign = _foreign(BASIC, "T2")
        remote = [create_record(PREMIUM, "P1")]

        merged = merge_entitlements([foreign], remote, [create_purchase(BASIC, "T2")])

        assert merged[-1] is foreign
        assert [record.product for record in merged] == [PREMIUM, BASIC]

    def test_token_mismatch_is_dropped(self):
        """The device must still hold the exact same token."""
        merged = merge_entitlements([_foreign(BASIC, "T2")], [], [create_purchase(BASIC, "T3")])

        assert merged == []

    def test_no_longer_on_device_is_dropped(self):
        merged = merge_entitlements([_foreign(BASIC, "T2")], [], [])

        assert merged == []

    def test_remote_record_for_product_wins(self):
        """A remote record for the same product replaces the retained one."""
        remote = [create_record(BASIC, "T2")]

        merged = merge_entitlements([_foreign(BASIC, "T2")], remote, [create_purchase(BASIC, "T2")])

        assert len(merged) == 1
        assert not merged[0].sub_already_owned

    def test_not_owned_elsewhere_is_not_retained(self):
        """Only records owned by another account are retained."""
        old_local = [create_record(BASIC, "T1", is_local_purchase=True)]

        merged = merge_entitlements(old_local, [], [create_purchase(BASIC, "T1")])

        assert merged == []

    def test_duplicates_are_not_retained_twice(self):
        """Two stored records for one product yield one retained record."""
        first = _foreign(BASIC, "T2")
        second = _foreign(BASIC, "T2")

        merged = merge_entitlements([first, second], [], [create_purchase(BASIC, "T2")])

        assert merged == [first]

    def test_merge_is_idempotent(self):
        """Merging the output again does not accumulate retained records."""
        old_local = [_foreign(BASIC, "T2")]
        remote = [create_record(PREMIUM, "P1")]
        device = [create_purchase(BASIC, "T2")]

        once = merge_entitlements(old_local, remote, device)
        twice = merge_entitlements(once, remote, device)

        assert once == twice
        assert merge_entitlements(old_local, remote, device) == once


class TestPrepaidFlag:
    """The device purchase decides between a prepaid and a renewable plan."""

    def test_non_renewing_device_purchase_is_prepaid(self):
        remote = [create_record(BASIC, "T1")]
        device = [create_purchase(BASIC, "T1", is_auto_renewing=False)]

        merged = merge_entitlements([], remote, device)

        assert merged[0].is_prepaid

    def test_renewing_device_purchase_clears_prepaid(self):
        remote = [create_record(PREMIUM, "P1", is_prepaid=True)]

        merged = merge_entitlements([], remote, [create_purchase(PREMIUM, "P1")])

        assert not merged[0].is_prepaid

    def test_record_off_device_keeps_its_flag(self):
        remote = [create_record(PREMIUM, "P1", is_prepaid=True)]

        merged = merge_entitlements([], remote, [])

        assert merged[0].is_prepaid

    def test_only_listed_subscriptions_are_flagged(self):
        """One-time products never auto-renew and are not prepaid plans."""
        remote = [create_record(ONE_TIME, "O1")]
        device = [create_purchase(ONE_TIME, "O1", is_auto_renewing=False)]

        merged = merge_entitlements([], remote, device, subscriptions={BASIC, PREMIUM})

        assert not merged[0].is_prepaid

    def test_foreign_record_keeps_its_flag(self):
        foreign = EntitlementRecord.already_owned(BASIC, "T2")

        device = [create_purchase(BASIC, "T2", is_auto_renewing=False)]

        merged = merge_entitlements([], [foreign], device)

        assert not merged[0].is_prepaid
