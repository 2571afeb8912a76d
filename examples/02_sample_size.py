"""
Sample Size Sweep Example
=========================

This example sweeps the sample size to find where power for the effect of
interest crosses 80%.
"""

from simreg import ReplicationSpec, run_simulation

print("=" * 60)
print("SAMPLE SIZE SWEEP EXAMPLE")
print("=" * 60)

# 1. Declarative spec; vary_arguments turns it into a sweep
spec = ReplicationSpec(
    formula="wellbeing ~ exercise + age + exercise:age",
    variables={"exercise": "normal(0, 1)", "age": "uniform(-1, 1)"},
    reg_weights=[0.0, 0.3, 0.2, 0.15],
    sample_size=100,
    replications=500,
    vary_arguments={"sample_size": [50, 100, 200, 400]},
    seed=2137,
)

# 2. Run in parallel; results do not depend on the number of workers
result = run_simulation(spec, n_jobs=-1)

# 3. Power curve for the interaction
interaction = result.summary[result.summary["term"] == "exercise:age"]
print(interaction[["sample_size", "power", "n_successful"]].to_string(index=False))

enough = interaction[interaction["power"] >= 0.8]
if enough.empty:
    print("\nNo tested sample size reaches 80% power for the interaction.")
else:
    print(f"\nSmallest tested N with 80% power: {enough['sample_size'].min()}")

# 4. Save for later
result.to_csv("sample_size_sweep.csv")
