"""
Tests for the Entitlement State Classifier.

Covers the plan priority chain, the tie-break between tiers, per-record
status predicates, content tiers and conversion actions.
"""

import pytest

from conftest import BASIC, ONE_TIME, PREMIUM, create_record
from entitlement_sync.models.domain import EntitlementRecord
from entitlement_sync.services.classifier import (
    ConversionAction,
    CurrentPlan,
    EntitlementClassifier,
    is_account_hold,
    is_grace_period,
    is_one_time_product_owned,
    is_paused,
    is_subscription_restore,
    is_transfer_required,
)
from entitlement_sync.services.product_catalog import ProductKind


@pytest.fixture
def classifier(catalog) -> EntitlementClassifier:
    return EntitlementClassifier(catalog)


def _renewable(product: str) -> EntitlementRecord:
    return create_record(product, f"{product}-token", will_renew=True)


def _prepaid(product: str) -> EntitlementRecord:
    return create_record(product, f"{product}-prepaid", is_prepaid=True)


class TestClassify:
    """Tests for the current plan."""

    def test_empty_list_is_none(self, classifier):
        assert classifier.classify([]) == CurrentPlan.NONE

    def test_single_basic_renewable(self, classifier):
        """One active renewable basic record and nothing else."""
        assert classifier.classify([_renewable(BASIC)]) == CurrentPlan.BASIC_RENEWABLE

    def test_single_premium_renewable(self, classifier):
        assert classifier.classify([_renewable(PREMIUM)]) == CurrentPlan.PREMIUM_RENEWABLE

    def test_single_basic_prepaid(self, classifier):
        assert classifier.classify([_prepaid(BASIC)]) == CurrentPlan.BASIC_PREPAID

    def test_single_premium_prepaid(self, classifier):
        assert classifier.classify([_prepaid(PREMIUM)]) == CurrentPlan.PREMIUM_PREPAID

    def test_renewable_wins_over_prepaid(self, classifier):
        """Renewable basic with prepaid premium is still basic renewable."""
        records = [_renewable(BASIC), _prepaid(PREMIUM)]

        assert classifier.classify(records) == CurrentPlan.BASIC_RENEWABLE

    def test_both_renewable_tiers_pick_premium(self, classifier):
        """Holding both renewable tiers resolves to the higher tier."""
        records = [_renewable(BASIC), _renewable(PREMIUM)]

        assert classifier.classify(records) == CurrentPlan.PREMIUM_RENEWABLE

    def test_both_prepaid_tiers_pick_premium(self, classifier):
        records = [_prepaid(BASIC), _prepaid(PREMIUM)]

        assert classifier.classify(records) == CurrentPlan.PREMIUM_PREPAID

    def test_inactive_records_are_ignored(self, classifier):
        records = [create_record(PREMIUM, "P1", is_entitlement_active=False)]

        assert classifier.classify(records) == CurrentPlan.NONE

    def test_owned_elsewhere_is_ignored(self, classifier):
        """Active records owned by another account grant nothing."""
        records = [create_record(PREMIUM, "P1", sub_already_owned=True)]

        assert classifier.classify(records) == CurrentPlan.NONE

    def test_one_time_products_do_not_set_plan(self, classifier):
        assert classifier.classify([create_record(ONE_TIME, "O1")]) == CurrentPlan.NONE


class TestDescribe:
    """Tests for the entitlement summary."""

    def test_already_owned_purchase_requires_transfer(self, classifier):
        """A conflicting registration is shown as a transfer, not dropped."""
        records = [EntitlementRecord.already_owned(BASIC, "T2")]

        summary = classifier.describe(records)

        assert summary.current_plan == CurrentPlan.NONE
        assert summary.transfer_required == (BASIC,)

    @pytest.mark.parametrize(
        ("records", "actions"),
        [
            (
                [_renewable(BASIC)],
                (ConversionAction.UPGRADE_TO_PREMIUM, ConversionAction.CONVERT_TO_BASIC_PREPAID),
            ),
            (
                [_renewable(PREMIUM)],
                (ConversionAction.DOWNGRADE_TO_BASIC, ConversionAction.CONVERT_TO_PREMIUM_PREPAID),
            ),
            (
                [_prepaid(BASIC)],
                (
                    ConversionAction.TOP_UP_BASIC_PREPAID,
                    ConversionAction.CONVERT_TO_BASIC_RENEWABLE,
                ),
            ),
            (
                [_prepaid(PREMIUM)],
                (
                    ConversionAction.TOP_UP_PREMIUM_PREPAID,
                    ConversionAction.CONVERT_TO_PREMIUM_RENEWABLE,
                ),
            ),
            ([], (ConversionAction.PURCHASE_BASIC, ConversionAction.PURCHASE_PREMIUM)),
        ],
    )
    def test_conversion_actions(self, classifier, records, actions):
        assert classifier.describe(records).conversion_actions == actions

    def test_record_statuses_follow_record_order(self, classifier):
        records = [_renewable(PREMIUM), create_record(BASIC, "B1", will_renew=False)]

        statuses = classifier.describe(records).record_statuses

        assert [status.purchase_token for status in statuses] == [f"{PREMIUM}-token", "B1"]
        assert statuses[0].premium_content and not statuses[0].basic_content
        assert statuses[1].basic_content and statuses[1].subscription_restore

    def test_record_status_flags(self, classifier):
        held = classifier.record_status(
            create_record(BASIC, "B1", will_renew=True, is_grace_period=True)
        )
        on_hold = classifier.record_status(
            create_record(PREMIUM, "P1", is_entitlement_active=False, is_account_hold=True)
        )
        paused = classifier.record_status(
            create_record(PREMIUM, "P2", is_entitlement_active=False, is_paused=True)
        )
        foreign = classifier.record_status(EntitlementRecord.already_owned(BASIC, "T2"))

        assert held.grace_period and not held.subscription_restore
        assert on_hold.account_hold and not on_hold.premium_content
        assert paused.paused and not paused.account_hold
        assert foreign.transfer_required and not foreign.basic_content

    def test_one_time_product_is_never_a_restore(self, classifier):
        status = classifier.record_status(create_record(ONE_TIME, "O1", will_renew=False))

        assert not status.subscription_restore


class TestContentTiers:
    """Tests for entitled content."""

    def test_premium_includes_basic(self, classifier):
        tiers = classifier.content_tiers([_renewable(PREMIUM)])

        assert tiers == {ProductKind.PREMIUM, ProductKind.BASIC}

    def test_basic_only(self, classifier):
        assert classifier.content_tiers([_prepaid(BASIC)]) == {ProductKind.BASIC}

    def test_consumed_one_time_product_grants_nothing(self, classifier):
        records = [create_record(ONE_TIME, "O1", is_consumed=True)]

        assert classifier.content_tiers(records) == frozenset()

    def test_owned_one_time_product(self, classifier):
        assert classifier.content_tiers([create_record(ONE_TIME, "O1")]) == {ProductKind.ONE_TIME}

    def test_unknown_product_grants_nothing(self, classifier):
        assert classifier.content_tiers([create_record("legacy", "L1")]) == frozenset()

    def test_content_predicates(self, classifier):
        assert classifier.is_basic_content(_renewable(BASIC))
        assert not classifier.is_basic_content(_renewable(PREMIUM))
        assert classifier.is_premium_content(_renewable(PREMIUM))


class TestStatusPredicates:
    """Tests for per-record status predicates."""

    def test_grace_period(self):
        assert is_grace_period(create_record(is_grace_period=True))
        assert not is_grace_period(create_record(is_grace_period=True, sub_already_owned=True))

    def test_subscription_restore(self):
        """Active but not renewing can be restored."""
        assert is_subscription_restore(create_record(will_renew=False))
        assert not is_subscription_restore(create_record(will_renew=True))

    def test_account_hold_requires_inactive(self):
        assert is_account_hold(create_record(is_entitlement_active=False, is_account_hold=True))
        assert not is_account_hold(create_record(is_account_hold=True))

    def test_paused_requires_inactive(self):
        assert is_paused(create_record(is_entitlement_active=False, is_paused=True))
        assert not is_paused(create_record(is_paused=True))

    def test_transfer_required(self):
        assert is_transfer_required(EntitlementRecord.already_owned(BASIC, "T2"))
        assert not is_transfer_required(create_record(sub_already_owned=True))

    def test_one_time_product_owned(self):
        assert is_one_time_product_owned(create_record(ONE_TIME, "O1"))
        assert not is_one_time_product_owned(create_record(ONE_TIME, "O1", is_consumed=True))
