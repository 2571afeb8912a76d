"""
Correlated Predictors Example
=============================

This example shows how correlated predictors reduce power, and how to
vary the error variance alongside.
"""

from simreg import SimReg

print("=" * 60)
print("CORRELATED PREDICTORS EXAMPLE")
print("=" * 60)

model = SimReg(
    "satisfaction ~ income + education + support",
    variables="income=normal(0, 1), education=normal(0, 1), support=normal(0, 1)",
    reg_weights="Intercept=0, income=0.25, education=0.25, support=0.3",
    sample_size=150,
    replications=500,
)

print("\n1. INDEPENDENT PREDICTORS:")
model.find_power(progress_callback=False)

# Rank induction keeps every marginal exactly
print("\n2. CORRELATED PREDICTORS:")
model.set_correlations("corr(income, education)=0.6, corr(income, support)=0.3")
model.find_power(progress_callback=False)

# Use __ for dotted sweep paths
print("\n3. VARYING THE ERROR VARIANCE:")
model.vary(error__variance=[0.5, 1.0, 2.0])
model.find_power(progress_callback=False)
