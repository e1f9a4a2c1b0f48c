"""
Atomicity Conformance Tests

INVARIANT: Rejected writes leave no trace.

    ∀ write W (add_transaction, update_transaction, set_tx_status_*):
        W raises ⟹ the transaction mapping is unchanged
                    and no lifecycle event is queued

Validation and transition checks run before the mapping is touched.
"""

from hypothesis import given, settings
from hypothesis import strategies as st

from txledger import LedgerError, TransactionStatus

from tests.fake_env import FakeEnvironment, VALID_TX_PARAMS, make_tx


invalid_values = st.one_of(
    st.integers(),
    st.booleans(),
    st.dictionaries(st.text(max_size=3), st.integers(), max_size=2),
    st.text(alphabet="ghijklmnopqrstuvwxyz", min_size=1, max_size=8),
    st.text(alphabet="ghijkxyz-!", min_size=1, max_size=8).map(lambda s: "0x" + s),
)

fields = st.sampled_from(sorted(VALID_TX_PARAMS))
statuses = st.sampled_from(list(TransactionStatus))


def snapshot(ledger):
    return ledger.get_transactions(filter_to_current_network=False)


class TestAtomicityProperties:
    """Property-based atomicity tests."""

    @given(fields, invalid_values)
    @settings(max_examples=50)
    def test_invalid_add_changes_nothing(self, field, value):
        """
        PROPERTY: An add with a malformed tx_params field is refused whole.
        """
        ledger = FakeEnvironment().ledger(tx_history_limit=5)
        ledger.add_transaction(make_tx(0, tx_params=VALID_TX_PARAMS))
        before = snapshot(ledger)

        bad = make_tx(1, tx_params=dict(VALID_TX_PARAMS, **{field: value}))
        try:
            ledger.add_transaction(bad)
        except LedgerError:
            pass
        else:
            raise AssertionError(f"{field}={value!r} was accepted")

        assert snapshot(ledger) == before

    @given(fields, invalid_values)
    @settings(max_examples=50)
    def test_invalid_update_changes_nothing(self, field, value):
        """
        PROPERTY: An update with a malformed tx_params field is refused whole.
        """
        ledger = FakeEnvironment().ledger(tx_history_limit=5)
        ledger.add_transaction(make_tx(0, tx_params=VALID_TX_PARAMS))
        before = snapshot(ledger)

        candidate = ledger.get_transaction(0)
        candidate["tx_params"][field] = value
        candidate["hash"] = "0x1"
        try:
            ledger.update_transaction(candidate)
        except LedgerError:
            pass
        else:
            raise AssertionError(f"{field}={value!r} was accepted")

        assert snapshot(ledger) == before

    @given(statuses, statuses)
    @settings(max_examples=50)
    def test_refused_transition_changes_nothing(self, start, target):
        """
        PROPERTY: A status change either succeeds with events or fails without any.
        """
        ledger = FakeEnvironment().ledger(tx_history_limit=5)
        ledger.add_transaction(make_tx(0, status=start))
        before = snapshot(ledger)

        try:
            ledger._set_tx_status(0, target)
        except LedgerError:
            assert snapshot(ledger) == before
            assert ledger.events.pending_count() == 0
        else:
            assert ledger.get_transaction(0)["status"] is target
            assert ledger.events.pending_count() == 2
