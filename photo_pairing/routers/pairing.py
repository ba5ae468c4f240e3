"""
Pairing Router
Runs one feature batch through the pairing engine without persisting anything.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from photo_pairing.models.schemas import PairingRequest, PairingResponse
from photo_pairing.services.invariants import InvalidFeatureInputError
from photo_pairing.services.pipeline import PairingPipeline, get_pairing_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/pairing", tags=["Pairing"])


@router.post("/run", response_model=PairingResponse, response_model_by_alias=True)
async def run_pairing(
    payload: PairingRequest,
    pipeline: PairingPipeline = Depends(get_pairing_pipeline)
):
    """
    Pair a batch of image features.

    Thresholds in the request override the deployment defaults for this call
    only. Duplicate URLs are rejected with 422.
    """
    if payload.thresholds is not None:
        pipeline = PairingPipeline(
            thresholds=payload.thresholds,
            disambiguator=pipeline.disambiguator,
            settings=pipeline.settings
        )

    try:
        run = await pipeline.run(payload.features)
    except InvalidFeatureInputError as e:
        raise HTTPException(status_code=422, detail=str(e))

    logger.info(
        f"Pairing run {run.run_id}: {len(run.result.products)} products, "
        f"{len(run.result.remaining_singletons)} singletons"
    )

    return PairingResponse(
        products=run.result.products,
        remaining_singletons=run.result.remaining_singletons,
        metrics=run.metrics,
        audit=run.audit
    )
