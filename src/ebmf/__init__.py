"""Empirical Bayes Matrix Factorization (EBMF)

EBMF (Wang and Stephens 2021) is the model

y_ij = sum_k l_ik f_jk + e_ij
e_ij ~ N(0, 1 / tau_ij)
l_ik ~ g_lk(.)
f_jk ~ g_fk(.)

where the priors g are estimated from the data. We fit the model by
variational empirical Bayes, assuming q(L, F) factorizes over components and
sides. Each coordinate update reduces to an Empirical Bayes Normal Means
(EBNM) problem, solved by any function satisfying the contract in
ebmf.ebnm.

A typical fit is

state = ebmf.FitState(y)
state = ebmf.fit_greedy(state, max_k=10)
state = ebmf.nullcheck(state)
state = ebmf.backfit(state)

Missing entries of y are denoted by nan.

"""
from .errors import InvalidInput, NumericDegeneracy, NumericDegeneracyWarning
from .state import FitState
from .init import add_components, add_fixed, init_from_lf, init_from_svd
from .greedy import fit_greedy, init_rank_one
from .backfit import backfit
from .nullcheck import nullcheck
from .sample import sampler, sample_fitted
from . import convergence
from . import ebnm
from . import variance
