#!/usr/bin/env python3
"""
Demo script showing how to use the retirement scenario modules programmatically.
Runs the sample profile (or the profile named in engine_config.json) through
every scenario and the readiness check.
"""

from config_utils import get_sample_profile, load_app_config, setup_logging
from io_utils import export_trajectory_csv, format_currency, load_profile_json, profile_to_dict
from readiness import calculate_retirement_readiness
from simulation import run_all_scenarios
from tax import calculate_income_tax, get_tax_summary
from withdrawal import allocate_withdrawal, calculate_account_type_weights


def main():
    config = load_app_config()
    setup_logging(config['log_level'])

    print("🚀 Retirement Scenario Demo")
    print("=" * 50)

    # 1. Load a profile
    if config.get('profile_path'):
        print(f"\n📂 Loading profile from {config['profile_path']}...")
        profile = load_profile_json(config['profile_path'])
    else:
        print("\n📂 Using the built-in sample profile...")
        profile = get_sample_profile()

    settings = profile.settings
    currency = settings.reporting_currency
    print(f"   Profile: {profile.name}, age {settings.profile.age}")
    print(f"   Assets: {len(profile.assets)}, income sources: {len(profile.income)}, "
          f"expense items: {len(profile.expenses)}")

    # 2. Readiness check
    print("\n🧭 Retirement Readiness:")
    readiness = calculate_retirement_readiness(profile)
    print(f"   Investible assets: {format_currency(readiness.investible_assets, currency, 1)}")
    print(f"   Annual expenses (today): {format_currency(readiness.annual_expenses, currency, 0)}")
    for phase in readiness.phases:
        print(f"   {phase.name:<18} needs {format_currency(phase.portfolio_required, currency, 1)}")
    verdict = "on track" if readiness.is_ready else f"short by {format_currency(readiness.gap, currency, 1)}"
    print(f"   Verdict: {verdict}")

    # 3. Tax calculation demo
    print("\n💰 Tax Calculation Demo:")
    summary = get_tax_summary(600_000, 66, settings.tax_config)
    print(f"   Income {format_currency(600_000, currency)} at 66: tax "
          f"{format_currency(summary['net_tax'], currency, 1)}, "
          f"effective {summary['effective_rate']:.1f}%, marginal {summary['marginal_rate']:.0f}%")

    boundary = calculate_income_tax(237_101, 40, settings.tax_config)
    print(f"   Gross tax at the first bracket boundary: {boundary.gross_tax:,.2f}")

    weights = calculate_account_type_weights(profile.assets, settings.exchange_rates, currency)
    allocation = allocate_withdrawal(200_000, weights, 0.4, 36)
    print(f"   Net need {format_currency(200_000, currency)} grosses up to "
          f"{format_currency(allocation.gross_withdrawal, currency, 1)} "
          f"({allocation.effective_tax_rate:.1f}% tax)")

    # 4. Run every scenario
    print("\n📉 Scenario Projections:")
    results = run_all_scenarios(profile)
    for name, result in results.items():
        status = "✅ sustains" if result.success else f"❌ depletes at {result.depletion_age}"
        print(f"   {name:<14} {status}, final {format_currency(result.final_value, currency, 1)}, "
              f"withdrawal tax {result.metrics.get('withdrawal_tax_rate', 0):.1f}%")
        for warning in result.warnings:
            print(f"      ⚠️  {warning}")

    # 5. Year-by-year details for the first scenario
    first = next(iter(results.values()), None)
    if first is not None and first.trajectory:
        print(f"\n📋 Year-by-Year Details ({first.scenario_name}, first 8 years):")
        print(f"   {'Age':<5} {'Start':<12} {'Expenses':<10} {'Income':<10} {'Withdrawal':<11} {'End':<12}")
        print(f"   {'-'*5} {'-'*12} {'-'*10} {'-'*10} {'-'*11} {'-'*12}")
        for point in first.trajectory[:8]:
            print(f"   {point.age:<5} {format_currency(point.net_worth, currency, 2):<12} "
                  f"{format_currency(point.expenses, currency):<10} {format_currency(point.income, currency):<10} "
                  f"{format_currency(point.withdrawal, currency):<11} {format_currency(point.end_value, currency, 2):<12}")

        csv_data = export_trajectory_csv(first)
        print(f"\n💾 Trajectory exported to CSV ({len(csv_data)} characters)")

    profile_json = profile_to_dict(profile)
    print(f"   Profile serialises to {len(profile_json)} top-level keys")

    print("\n✅ Demo completed successfully!")
    print("   To run tests: python3 -m pytest tests/ -v")


if __name__ == "__main__":
    main()
