import stripe


class TransferError(Exception):
    """The payment rail rejected or could not complete a transfer."""


class TransferTimeout(TransferError):
    """
    The transfer outcome is unknown (timeout or dropped connection). The
    money may have moved, so this must be reconciled by hand, not retried.
    """


class StripeTransferRail:
    """Stripe Connect transfers to an affiliate's connected account."""

    def __init__(self, api_key, timeout=30):
        self.api_key = api_key
        self.timeout = timeout
        self._client = None

    @classmethod
    def from_config(cls, config):
        return cls(config['STRIPE_SECRET_KEY'], timeout=config.get('STRIPE_TIMEOUT_SECONDS', 30))

    def _configure(self):
        stripe.api_key = self.api_key
        stripe.max_network_retries = 0
        if self._client is None:
            self._client = stripe.RequestsClient(timeout=self.timeout)
        stripe.default_http_client = self._client

    def create_transfer(self, amount_minor_units, currency, destination, metadata=None,
                        idempotency_key=None, description=None):
        """Returns the Stripe transfer id."""
        if amount_minor_units <= 0:
            raise TransferError(f'Transfer amount must be positive, got {amount_minor_units}')

        self._configure()
        try:
            transfer = stripe.Transfer.create(
                amount=amount_minor_units,
                currency=currency,
                destination=destination,
                description=description,
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            )
        except stripe.APIConnectionError as e:
            raise TransferTimeout(str(e)) from e
        except stripe.StripeError as e:
            raise TransferError(e.user_message or str(e)) from e
        return transfer.id

    def create_connect_account(self, email, country='GB'):
        self._configure()
        account = stripe.Account.create(
            type='express',
            country=country,
            email=email,
            capabilities={'transfers': {'requested': True}},
        )
        return account.id

    def create_onboarding_link(self, account_id, refresh_url, return_url):
        self._configure()
        link = stripe.AccountLink.create(
            account=account_id,
            refresh_url=refresh_url,
            return_url=return_url,
            type='account_onboarding',
        )
        return link.url
