"""
Start Decision API Server

Launches the EdgeCore Decision Engine REST API on port 8010.
Set EDGECORE_CONFIG to a JSON config file to override the defaults.
"""

import uvicorn
import logging

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

if __name__ == "__main__":
    print("="*60)
    print("  EdgeCore - Decision Engine API")
    print("="*60)
    print()
    print("Starting server on http://0.0.0.0:8010")
    print()
    print("Available endpoints:")
    print("  POST /evaluate                          - Run one decision cycle")
    print("  POST /outcomes                          - Report a realized outcome")
    print("  GET  /regime/{symbol}                   - Current regime")
    print("  GET  /regime/{symbol}/statistics        - Regime statistics")
    print("  GET  /thresholds/{symbol}               - Adaptive thresholds")
    print("  POST /thresholds/{symbol}/adjust        - Force relax/tighten")
    print("  POST /thresholds/{symbol}/reset         - Reset thresholds")
    print("  GET  /thresholds/{symbol}/analytics     - Rejection/density analytics")
    print("  GET  /learning/{symbol}/health          - Learning health")
    print("  GET  /learning/{symbol}/recommendations - Proposed parameter changes")
    print("  POST /learning/{symbol}/recalibrate     - Force recalibration")
    print("  GET  /telemetry                         - Recent telemetry")
    print("  GET  /health                            - Service health")
    print("  GET  /config                            - Configuration")
    print()
    print("Press CTRL+C to stop")
    print("="*60)
    print()

    uvicorn.run(
        "edgecore.api:app",
        host="0.0.0.0",
        port=8010,
        reload=False,
        log_level="info"
    )
