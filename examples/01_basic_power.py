"""
Basic Power Analysis Example
============================

This example shows how to estimate the power of a linear regression to
detect the effects you expect, at a fixed sample size.
"""

from simreg import SimReg

# Example: Does a tutoring programme improve exam scores?
# Research question: With 120 students, how likely are we to detect the effect?

print("=" * 60)
print("BASIC POWER ANALYSIS EXAMPLE")
print("=" * 60)

# 1. Define the generating model, predictors and expected effects
model = SimReg(
    "score ~ tutoring + prior_grade",
    variables="tutoring=binary(0.5), prior_grade=normal(0, 1)",
    reg_weights="Intercept=0, tutoring=0.4, prior_grade=0.5",
    sample_size=120,
    replications=1000,
)

# 2. Run the simulation and print the summary table
result = model.find_power(summary="short")

# 3. Detailed output with bias and standard-error checks
print("\nDETAILED OUTPUT:")
model.find_power(summary="long", progress_callback=False)

# 4. A stricter test: alpha = 0.01, one-sided
print("\nSTRICTER TEST (alpha = 0.01, one-sided):")
model.set_alpha(0.01).set_power_test(alternative="greater")
model.find_power(progress_callback=False)

# 5. Results are plain DataFrames
print("\nPower for the tutoring effect:")
print(result.summary.loc[result.summary["term"] == "tutoring", ["term", "power"]])
