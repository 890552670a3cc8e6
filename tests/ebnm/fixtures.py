import numpy as np
import pytest
import scipy.stats as st

def _simulate_point_normal(n=500, pi0=0.8, sd=2):
  np.random.seed(0)
  s = np.random.uniform(0.5, 1.5, size=n)
  theta = np.where(np.random.uniform(size=n) < pi0, 0, np.random.normal(scale=sd, size=n))
  x = theta + s * np.random.normal(size=n)
  # Important: the oracle marginal likelihood uses the true prior
  llik = np.log(pi0 * st.norm(scale=s).pdf(x) + (1 - pi0) * st.norm(scale=np.sqrt(sd * sd + s * s)).pdf(x)).sum()
  return x, s, theta, llik

@pytest.fixture
def simulate_point_normal():
  return _simulate_point_normal()

@pytest.fixture
def simulate_normal():
  return _simulate_point_normal(pi0=0)
