import numpy as np
import pytest

def _simulate_low_rank(n, p, k, sigma):
  np.random.seed(0)
  l = np.random.normal(size=(n, k))
  f = np.random.normal(size=(p, k))
  y = l @ f.T + np.random.normal(scale=sigma, size=(n, p))
  return y, l, f

def cosine(a, b):
  return abs(a @ b) / (np.linalg.norm(a) * np.linalg.norm(b))

@pytest.fixture
def simulate_rank1():
  return _simulate_low_rank(20, 10, 1, 0.1)

@pytest.fixture
def simulate_rank2():
  return _simulate_low_rank(50, 40, 2, 1)

@pytest.fixture
def simulate_rank1_missing():
  y, l, f = _simulate_low_rank(100, 50, 1, 0.5)
  np.random.seed(1)
  y[np.random.uniform(size=y.shape) < 0.1] = np.nan
  return y, l, f

@pytest.fixture
def simulate_noise():
  np.random.seed(0)
  return np.random.normal(size=(50, 30))

@pytest.fixture
def simulate_sparse_rank1():
  np.random.seed(0)
  n, p = 3000, 300
  l = np.where(np.random.uniform(size=n) < 0.9, 0, np.random.normal(scale=2, size=n))
  f = np.random.normal(size=p)
  y = np.outer(l, f) + np.random.normal(size=(n, p))
  return y, l.reshape(-1, 1), f.reshape(-1, 1)

@pytest.fixture
def simulate_rank1_by_column():
  np.random.seed(0)
  n, p = 100, 50
  l = np.random.normal(size=n)
  f = np.random.normal(size=p)
  sigma = np.random.uniform(0.2, 2, size=(1, p))
  y = np.outer(l, f) + sigma * np.random.normal(size=(n, p))
  return y, l.reshape(-1, 1), f.reshape(-1, 1)
