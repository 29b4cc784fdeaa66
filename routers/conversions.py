import logging
from string import Template
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from config import BASE_URL
from database import get_db
from schemas import ConversionCreate, ConversionOut, ConversionRecordedOut, AttributionSnapshot
from services.attribution import AttributionResolver
from services.conversions import ConversionAttributor

logger = logging.getLogger(__name__)
router = APIRouter()

SCRIPT_MAX_AGE = 3600

# Landing pages include this to carry the redirect's tracking id into POST /conversions
TRACKING_SCRIPT = Template("""(function() {
  var tracker = {
    baseUrl: '$base_url',
    trackingId: null,
    linkId: null,

    init: function() {
      try {
        var params = new URLSearchParams(window.location ? window.location.search : '');
        var trackingId = params.get('tracking_id') || params.get('click_id');
        if (trackingId) {
          sessionStorage.setItem('ct_tracking_id', trackingId);
          var linkId = params.get('utm_campaign');
          if (linkId) {
            sessionStorage.setItem('ct_link_id', linkId);
          }
        }
      } catch (error) {
        console.warn('Campaign Tracker: unable to read the page URL, using session storage');
      }
      this.trackingId = sessionStorage.getItem('ct_tracking_id');
      this.linkId = sessionStorage.getItem('ct_link_id');
    },

    track: function(kind, options) {
      if (!this.trackingId || !this.linkId) {
        console.warn('Campaign Tracker: no tracking id found');
        return Promise.resolve();
      }
      var data = (options && options.data) || {};
      data.page_url = window.location ? window.location.href : 'unknown';
      data.page_title = document.title || 'unknown';
      data.timestamp = new Date().toISOString();
      var body = {
        tracking_id: this.trackingId,
        link_id: parseInt(this.linkId, 10),
        kind: kind,
        revenue: options && options.revenue !== undefined ? String(options.revenue) : null,
        data: data
      };
      return fetch(this.baseUrl + '/conversions', {
        method: 'POST',
        headers: {'Content-Type': 'application/json'},
        body: JSON.stringify(body)
      }).then(function(response) {
        if (!response.ok) {
          console.error('Campaign Tracker: failed to record conversion', response.status);
        }
        return response.json();
      }).catch(function(error) {
        console.error('Campaign Tracker: network error', error);
      });
    },

    trackSignup: function(options) {
      return this.track('signup', options);
    },

    trackPurchase: function(revenue, options) {
      var opts = options || {};
      opts.revenue = revenue;
      return this.track('purchase', opts);
    },

    trackEnrollment: function(options) {
      return this.track('enrollment', options);
    }
  };

  tracker.init();
  window.CampaignTracker = tracker;
})();
""")


@router.post("/conversions", response_model=ConversionRecordedOut, status_code=status.HTTP_201_CREATED)
async def record_conversion(body: ConversionCreate, db: AsyncSession = Depends(get_db)):
    recorded = await ConversionAttributor(db).record(
        tracking_id=body.tracking_id,
        link_id=body.link_id,
        kind=body.kind,
        revenue=body.revenue,
        data=body.data,
    )
    attribution = await AttributionResolver(db).resolve(recorded.event.tracking_id)
    return ConversionRecordedOut(
        conversion=ConversionOut.model_validate(recorded.event),
        attribution=attribution,
        warnings=recorded.warnings,
    )


@router.get("/conversions/script")
async def tracking_script():
    script = TRACKING_SCRIPT.substitute(base_url=BASE_URL)
    return Response(
        content=script,
        media_type="application/javascript",
        headers={"Cache-Control": f"public, max-age={SCRIPT_MAX_AGE}"},
    )


@router.get("/attribution/{tracking_id}", response_model=AttributionSnapshot)
async def get_attribution(tracking_id: str, db: AsyncSession = Depends(get_db)):
    return await AttributionResolver(db).resolve(tracking_id)
