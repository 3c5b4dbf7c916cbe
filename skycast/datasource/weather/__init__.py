"""
OpenWeather data source for current weather.
"""

from skycast.datasource.weather.openweather import OpenWeatherSource, WeatherData

__all__ = ["OpenWeatherSource", "WeatherData"]
