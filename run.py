from copyboss import create_app
from copyboss.logger import app_logger as logger
from copyboss.scheduler import start_payout_scheduler
import os

app = create_app()

# Only the web server runs the monthly scheduler; CLI commands and the cron job do not
if app.config.get('PAYOUT_SCHEDULER_ENABLED'):
    start_payout_scheduler(app)

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 3000))
    logger.info(f"Server running on http://localhost:{port}")
    logger.info(f"Stripe webhook endpoint: http://localhost:{port}/api/billing/stripe-webhook")
    app.run(host='0.0.0.0', port=port, debug=os.environ.get('FLASK_ENV') == 'development')
