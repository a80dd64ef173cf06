"""
Test suite for loan type policy

Tests the loan type registry, the personal-loan fallback, upfront and
principal calculations and the prepaid-interest rule.
"""

import pytest
from dataclasses import FrozenInstanceError
from decimal import Decimal

from microfinance.errors import InvalidLoanParameters
from microfinance.loan_types import (
    LOAN_TYPES, DEFAULT_LOAN_TYPE, InterestDistribution, get_loan_type_config,
    calculate_upfront_amount, calculate_principal_amount, is_prepaid_interest
)
from microfinance.schedule import InterestMethod


class TestLoanTypeRegistry:
    """Test the loan type table"""

    def test_all_types_present(self):
        assert set(LOAN_TYPES) == {"personal", "excess", "business", "emergency", "micro"}

    def test_personal_policy(self):
        config = get_loan_type_config("personal")

        assert config.interest_rate == Decimal('0')
        assert config.upfront_percentage == Decimal('10')
        assert config.interest_method == InterestMethod.DECLINING_BALANCE
        assert config.has_default_charges is False
        assert config.interest_distribution == InterestDistribution(
            admin=Decimal('0.5'), client=Decimal('0.3'), general=Decimal('0.2')
        )

    def test_excess_policy_is_flat(self):
        config = get_loan_type_config("excess")
        assert config.interest_method == InterestMethod.FLAT
        assert config.interest_distribution is not None

    @pytest.mark.parametrize("name,rate,upfront,charges", [
        ("business", "5", "10", False),
        ("emergency", "16", "2", True),
        ("micro", "12", "5", True),
    ])
    def test_other_policies(self, name, rate, upfront, charges):
        config = get_loan_type_config(name)

        assert config.interest_rate == Decimal(rate)
        assert config.upfront_percentage == Decimal(upfront)
        assert config.has_default_charges is charges
        assert config.interest_distribution is None

    @pytest.mark.parametrize("name", ["agricultural", "", None])
    def test_unknown_types_fall_back_to_personal(self, name):
        assert get_loan_type_config(name) is LOAN_TYPES[DEFAULT_LOAN_TYPE]

    def test_lookup_ignores_case_and_whitespace(self):
        assert get_loan_type_config(" Business ").name == "business"

    def test_registry_is_immutable(self):
        with pytest.raises(TypeError):
            LOAN_TYPES["payday"] = LOAN_TYPES["micro"]

        with pytest.raises(FrozenInstanceError):
            LOAN_TYPES["micro"].interest_rate = Decimal('99')

    def test_to_dict(self):
        data = get_loan_type_config("personal").to_dict()
        assert data['interest_rate'] == "0"
        assert data['interest_distribution'] == {'admin': "0.5", 'client': "0.3", 'general': "0.2"}
        assert get_loan_type_config("micro").to_dict()['interest_distribution'] is None


class TestInterestDistribution:

    def test_fractions_must_sum_to_one(self):
        with pytest.raises(ValueError):
            InterestDistribution(admin=Decimal('0.5'), client=Decimal('0.3'), general=Decimal('0.3'))

    def test_fractions_cannot_be_negative(self):
        with pytest.raises(ValueError):
            InterestDistribution(admin=Decimal('1.2'), client=Decimal('-0.2'), general=Decimal('0'))


class TestUpfrontCalculations:
    """Test upfront deduction and principal"""

    def test_upfront_amount(self):
        assert calculate_upfront_amount(1000, 10) == Decimal('100.00')
        assert calculate_upfront_amount("1234.56", "2") == Decimal('24.69')

    def test_principal_amount(self):
        assert calculate_principal_amount(1000, Decimal('100')) == Decimal('900.00')

    def test_unparseable_amount(self):
        with pytest.raises(InvalidLoanParameters):
            calculate_upfront_amount("lots", 10)


class TestPrepaidInterestRule:
    """Only an explicit personal loan at 0% prepays its interest"""

    def test_personal_zero_rate(self):
        assert is_prepaid_interest("personal", Decimal('0')) is True

    def test_personal_with_rate(self):
        assert is_prepaid_interest("personal", Decimal('5')) is False

    def test_fallback_type_does_not_qualify(self):
        assert is_prepaid_interest("agricultural", Decimal('0')) is False

    def test_other_types(self):
        assert is_prepaid_interest("business", Decimal('0')) is False
