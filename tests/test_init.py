import numpy as np
import pytest
import ebmf
import ebmf.ebnm

from ebmf.errors import InvalidInput
from .fixtures import *

def test_init_from_lf(simulate_rank2):
  y, l, f = simulate_rank2
  init = ebmf.FitState(y)
  state = ebmf.init_from_lf(init, l, f)
  assert state.k == 2
  assert init.k == 0
  assert all(g is not None for g in state.gl + state.gf)
  assert state.elbo > init.elbo

def test_init_from_lf_vector(simulate_rank1):
  y, l, f = simulate_rank1
  state = ebmf.init_from_lf(ebmf.FitState(y), l[:,0], f[:,0])
  assert state.k == 1

def test_init_from_lf_shape_mismatch(simulate_rank2):
  y, l, f = simulate_rank2
  with pytest.raises(InvalidInput):
    ebmf.init_from_lf(ebmf.FitState(y), l, f[:,:1])
  with pytest.raises(InvalidInput):
    ebmf.init_from_lf(ebmf.FitState(y), l[1:], f)

def test_init_from_svd(simulate_rank2):
  y, _, _ = simulate_rank2
  u, d, vt = np.linalg.svd(y, full_matrices=False)
  state = ebmf.init_from_svd(ebmf.FitState(y), u[:,:2], d[:2], vt[:2].T)
  assert state.k == 2
  assert np.isfinite(state.elbo)
  assert cosine(state.l[:,0], u[:,0]) > 0.99

def test_init_from_svd_invalid(simulate_rank2):
  y, _, _ = simulate_rank2
  u, d, vt = np.linalg.svd(y, full_matrices=False)
  with pytest.raises(InvalidInput):
    ebmf.init_from_svd(ebmf.FitState(y), u[:,:2], d[:3], vt[:2].T)
  with pytest.raises(InvalidInput):
    ebmf.init_from_svd(ebmf.FitState(y), u[:,:2], -d[:2], vt[:2].T)

def test_add_components_ebnm_fn(simulate_rank2):
  y, l, f = simulate_rank2
  state = ebmf.add_components(ebmf.FitState(y), l, f, ebnm_fn=ebmf.ebnm.ebnm_normal)
  assert all(fn is ebmf.ebnm.ebnm_normal for fn in state.ebnm_l + state.ebnm_f)
  assert all(g.pi.shape == (1,) for g in state.gl + state.gf)

def test_add_components_fix_f(simulate_rank1):
  y, l, f = simulate_rank1
  state = ebmf.add_components(ebmf.FitState(y), l, f, fix_f=True)
  assert state.fix_f[0]
  assert np.isclose(state.f, f).all()
  assert state.gf[0] is None
  assert state.kl_f[0] == 0

def test_add_fixed_l(simulate_rank1):
  y, _, _ = simulate_rank1
  n, p = y.shape
  state = ebmf.add_fixed(ebmf.FitState(y + 2), l=np.ones(n))
  assert state.k == 1
  assert state.fix_l[0]
  assert not state.fix_f[0]
  # Important: the factor estimates the column means
  assert np.isclose(state.f[:,0], (y + 2).mean(axis=0), atol=0.5).all()

def test_add_fixed_f(simulate_rank1):
  y, _, _ = simulate_rank1
  n, p = y.shape
  state = ebmf.add_fixed(ebmf.FitState(y), f=np.ones(p))
  assert state.fix_f[0]
  assert (state.f[:,0] == 1).all()

def test_add_fixed_invalid(simulate_rank1):
  y, _, _ = simulate_rank1
  n, p = y.shape
  with pytest.raises(InvalidInput):
    ebmf.add_fixed(ebmf.FitState(y))
  with pytest.raises(InvalidInput):
    ebmf.add_fixed(ebmf.FitState(y), l=np.ones(n), f=np.ones(p))
  with pytest.raises(InvalidInput):
    ebmf.add_fixed(ebmf.FitState(y), l=np.ones(n + 1))
