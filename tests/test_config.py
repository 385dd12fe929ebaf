from freedom_bot.core.config import DEFAULT_VERIFICATION_PHOTO_COUNT, Settings


def test_required_photos_falls_back_for_non_positive_values() -> None:
    assert Settings(verification_required_photos=0).required_verification_photos == DEFAULT_VERIFICATION_PHOTO_COUNT
    assert Settings(verification_required_photos=-3).required_verification_photos == DEFAULT_VERIFICATION_PHOTO_COUNT
    assert Settings(verification_required_photos=3).required_verification_photos == 3


def test_subscription_periods_use_configured_prices() -> None:
    config = Settings(subscription_price_7=100, subscription_currency="KZT")

    periods = config.subscription_periods

    assert [period.id for period in periods] == ["7", "15", "30"]
    assert periods[0].amount == 100
    assert periods[0].days == 7
    assert config.find_subscription_period("15").days == 15
    assert config.find_subscription_period("90") is None
    assert config.find_subscription_period(None) is None


def test_payment_details() -> None:
    config = Settings(kaspi_card="4400 0000", kaspi_name="Freedom", kaspi_phone=None)

    details = config.payment_details

    assert details.card == "4400 0000"
    assert details.name == "Freedom"
    assert details.phone is None
