from __future__ import annotations

import anndata as ad
import numpy as np
import pandas as pd
import pytest

BATCH_GENE = "ENSG00039"


def make_spatial_adata(
    seed: int = 0,
    n_genes: int = 40,
    spots_per_sample: int = 20,
) -> ad.AnnData:
    """Three samples; ten spatial gradient genes; the last gene is sample-specific."""
    rng = np.random.default_rng(seed)
    samples = np.repeat(["A", "B", "C"], spots_per_sample)
    n_spots = samples.size
    pos = np.tile(np.linspace(0.0, 1.0, spots_per_sample), 3)

    base = rng.uniform(3.0, 15.0, n_genes)
    mu = np.tile(base, (n_spots, 1))
    mu[:, :10] = mu[:, :10] * (0.25 + 1.5 * pos[:, None])
    counts = rng.poisson(mu).astype(float)
    counts[:, n_genes - 1] = np.where(samples == "A", rng.poisson(20.0, n_spots), 0.0)

    gene_ids = [f"ENSG{i:05d}" for i in range(n_genes)]
    symbols = [f"G{i}" for i in range(n_genes)]
    symbols[-1] = "BATCH1"
    var = pd.DataFrame({"gene_name": symbols}, index=gene_ids)
    obs = pd.DataFrame(
        {
            "sample_id": samples,
            "sex": np.where(samples == "C", "M", "F"),
        },
        index=[f"spot{i}" for i in range(n_spots)],
    )
    return ad.AnnData(X=counts, obs=obs, var=var)


@pytest.fixture
def spatial_adata() -> ad.AnnData:
    return make_spatial_adata()


@pytest.fixture
def candidates(spatial_adata) -> list[str]:
    return list(spatial_adata.var_names)
