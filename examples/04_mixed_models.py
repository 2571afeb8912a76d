"""
Two-Level Designs Example
=========================

This example simulates students nested in schools and fits a random
intercept model.
"""

from simreg import SimReg

print("=" * 60)
print("TWO-LEVEL DESIGN EXAMPLE")
print("=" * 60)

variables = {
    "ses": "normal(0, 1)",
    "u0": {"type": "random_effect", "group": "school", "variance": 0.3},
}

# 1. Random intercept for school; 10 to 30 students in each of 25 schools
model = SimReg(
    "math ~ ses + (1|school)",
    variables=variables,
    reg_weights=[0.0, 0.25],
    sample_size={"level1": [10, 30], "level2": 25},
    replications=200,
)

# MixedLM fits are slow; spread them over all cores
model.set_parallel(True).set_timeout(30)
model.find_power()

# 2. How many schools are needed?
print("\nVARYING THE NUMBER OF SCHOOLS:")
model.vary(sample_size=[{"level1": 20, "level2": m} for m in (10, 20, 40)])
model.find_power(progress_callback=False)

# 3. Binary outcome: two-level designs are fitted with GEE
print("\nBINARY OUTCOME (GEE):")
binary = SimReg(
    "passed ~ ses + (1|school)",
    variables=variables,
    reg_weights=[0.0, 0.5],
    sample_size={"level1": 20, "level2": 25},
    family="binary",
    replications=200,
)
binary.find_power(progress_callback=False)
