import numpy as np
import pandas as pd
import pytest

from batchsvg.bias import (
    bias_detect,
    biased_gene_ids,
    outlier_subsets,
    refine,
    svg_nsd,
)
from batchsvg.core.types import TABLE_COLUMNS, BiasTable
from batchsvg.errors import InvalidInputError
from batchsvg.selection import feature_select

from conftest import BATCH_GENE


def _table(covariate: str, nsd_dev, nsd_rank, fit_failed=None) -> BiasTable:
    n = len(nsd_dev)
    ids = [f"g{i}" for i in range(n)]
    frame = pd.DataFrame(
        {
            "gene_id": ids,
            "gene_name": ids,
            "dev_nobatch": np.linspace(100.0, 50.0, n),
            "dev_batch": np.linspace(90.0, 40.0, n),
            "rel_change_dev": np.zeros(n),
            "rank_nobatch": np.arange(1, n + 1),
            "rank_batch": np.arange(1, n + 1),
            "rank_diff": np.zeros(n, dtype=int),
            "nSD_dev": np.asarray(nsd_dev, dtype=float),
            "nSD_rank": np.asarray(nsd_rank, dtype=float),
            "dev_outlier": False,
            "rank_outlier": False,
            "fit_failed": np.zeros(n, dtype=bool) if fit_failed is None else fit_failed,
        }
    ).loc[:, list(TABLE_COLUMNS)]
    return BiasTable(covariate=covariate, frame=frame, n_candidates=n)


def test_threshold_modes():
    table = _table("sample", [0.1, 2.5, -3.0, 0.0], [0.0, 0.2, 0.1, -4.0])

    dev = bias_detect([table], threshold="dev", nsd_dev=2.0)["sample"].frame
    assert dev["dev_outlier"].tolist() == [False, True, True, False]
    assert not dev["rank_outlier"].any()

    rank = bias_detect([table], threshold="rank", nsd_rank=2.0)["sample"].frame
    assert rank["rank_outlier"].tolist() == [False, False, False, True]
    assert not rank["dev_outlier"].any()

    both = bias_detect({"sample": table}, threshold="both", nsd_dev=2.0, nsd_rank=2.0)
    flagged = both["sample"]
    assert flagged.threshold == "both"
    assert flagged.nsd_dev == 2.0
    assert outlier_subsets(flagged) == {
        "dev_only": ["g1", "g2"],
        "rank_only": ["g3"],
        "both": [],
        "either": ["g1", "g2", "g3"],
    }
    # Input table is left untouched.
    assert not table.frame["dev_outlier"].any()


def test_rank_only_gene_is_removed_under_or_policy():
    table = _table("sex", [0.0, 0.5, -0.5], [0.0, 3.5, 0.1])
    flagged = bias_detect(table, threshold="both", nsd_dev=2.0, nsd_rank=2.0)
    frame = flagged["sex"].frame.set_index("gene_id")
    assert not frame.loc["g1", "dev_outlier"]
    assert frame.loc["g1", "rank_outlier"]

    biased = biased_gene_ids(flagged)
    assert biased == ["g1"]
    assert refine(["g0", "g1", "g2"], biased) == ["g0", "g2"]


def test_per_covariate_thresholds_and_length_mismatch():
    a = _table("sample", [2.5, 0.0, 0.0], [0.0, 0.0, 0.0])
    b = _table("subject", [2.5, 0.0, 0.0], [0.0, 0.0, 0.0])
    out = bias_detect([a, b], threshold="dev", nsd_dev=[2.0, 3.0])
    assert out["sample"].frame["dev_outlier"].tolist() == [True, False, False]
    assert not out["subject"].frame["dev_outlier"].any()

    with pytest.raises(InvalidInputError, match="2 covariate"):
        bias_detect([a, b], threshold="dev", nsd_dev=[2.0, 3.0, 4.0])
    with pytest.raises(InvalidInputError, match="nsd_rank is required"):
        bias_detect([a, b], threshold="both", nsd_dev=2.0)
    with pytest.raises(InvalidInputError, match="threshold must be one of"):
        bias_detect([a, b], threshold="either", nsd_dev=2.0)
    with pytest.raises(InvalidInputError, match="finite"):
        bias_detect([a], threshold="dev", nsd_dev=float("nan"))


def test_failed_genes_are_never_flagged():
    table = _table(
        "sample",
        [np.nan, 3.0, 0.0],
        [np.nan, 0.0, 0.0],
        fit_failed=np.array([True, False, False]),
    )
    frame = bias_detect(table, threshold="both", nsd_dev=0.0, nsd_rank=0.0)["sample"].frame
    assert frame["dev_outlier"].tolist() == [False, True, True]
    assert frame["rank_outlier"].tolist() == [False, True, True]


def test_raising_threshold_never_adds_outliers(spatial_adata, candidates):
    tables = feature_select(spatial_adata, candidates, ["sample_id", "sex"])
    counts = []
    for t in (0.5, 1.0, 1.5, 2.0, 3.0, 4.0):
        flagged = bias_detect(tables, threshold="dev", nsd_dev=t)
        counts.append(sum(int(x.frame["dev_outlier"].sum()) for x in flagged.values()))
    assert counts == sorted(counts, reverse=True)


def test_end_to_end_removes_sample_specific_gene(spatial_adata, candidates):
    tables = feature_select(spatial_adata, candidates, ["sample_id"])
    flagged = bias_detect(tables, threshold="both", nsd_dev=3.0, nsd_rank=3.0)
    biased = biased_gene_ids(flagged)
    assert BATCH_GENE in biased
    remaining = refine(candidates, biased)
    assert BATCH_GENE not in remaining
    assert len(remaining) == len(candidates) - len(biased)


def test_refine_identities():
    genes = ["a", "b", "c"]
    assert refine(genes, []) == genes
    assert refine(genes, genes) == []
    assert refine(genes, ["z"]) == genes


def test_svg_nsd_counts_every_scored_gene(spatial_adata, candidates):
    tables = feature_select(spatial_adata, candidates, ["sample_id", "sex"])
    bins = svg_nsd(tables, max_bin=4)
    assert list(bins.columns) == ["covariate", "metric", "bin", "lower", "count"]
    assert bins.shape[0] == 2 * 2 * 5
    totals = bins.groupby(["covariate", "metric"])["count"].sum()
    assert (totals == len(candidates)).all()
    assert bins["bin"].iloc[-1] == ">=4"


def test_refine_matches_symbol_candidates(spatial_adata):
    symbols = spatial_adata.var["gene_name"].astype(str).tolist()
    tables = feature_select(spatial_adata, symbols, ["sample_id"])
    flagged = bias_detect(tables, threshold="both", nsd_dev=3.0, nsd_rank=3.0)
    biased = biased_gene_ids(flagged)
    assert BATCH_GENE in biased

    remaining = refine(symbols, flagged)
    assert "BATCH1" not in remaining
    assert len(remaining) == len(symbols) - len(biased)
    assert remaining == [s for s in symbols if s in remaining]

    # Plain ids still work against the same tables.
    ids = list(spatial_adata.var_names)
    assert refine(ids, flagged) == refine(ids, biased)
