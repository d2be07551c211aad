"""Unit tests for hosts.py URL allow-listing."""

import pytest

from config import env_domains
from errors import DomainNotAllowed, InvalidUrl, NotVideoPage, SeriesPage
from hosts import check_url, clean_duplicated_url, is_allowed_url, is_ip_like, normalize_host

ALLOW = env_domains(environ={})


class TestNormalizeHost:
    """Tests for normalize_host."""

    def test_lowercases_and_strips(self):
        assert normalize_host('  TV.NRK.NO ') == 'tv.nrk.no'

    def test_drops_leading_www(self):
        assert normalize_host('www.nrk.no') == 'nrk.no'
        assert normalize_host('www.www.nrk.no') == 'www.nrk.no'

    def test_idna_encodes_unicode_hosts(self):
        host = normalize_host('Blåbær.no')
        assert host.startswith('xn--')
        assert host.endswith('.no')


class TestIsIpLike:
    def test_ipv4(self):
        assert is_ip_like('127.0.0.1') is True

    def test_localhost(self):
        assert is_ip_like('localhost') is True

    def test_ipv6(self):
        assert is_ip_like('::1') is True

    def test_hostname(self):
        assert is_ip_like('tv.nrk.no') is False


class TestCleanDuplicatedUrl:
    """URLs pasted twice are cut down to the first copy."""

    def test_concatenated_copy(self):
        url = 'https://tv.nrk.no/program/KOID1https://tv.nrk.no/program/KOID1'
        assert clean_duplicated_url(url) == 'https://tv.nrk.no/program/KOID1'

    def test_space_separated_copy(self):
        url = 'https://tv.nrk.no/program/KOID1 https://tv.nrk.no/program/KOID1'
        assert clean_duplicated_url(url) == 'https://tv.nrk.no/program/KOID1'

    def test_single_url_untouched(self):
        url = 'https://tv.nrk.no/serie/lindmo/2024/MUHU123'
        assert clean_duplicated_url(url) == url

    def test_non_http_untouched(self):
        assert clean_duplicated_url('tv.nrk.no/x') == 'tv.nrk.no/x'

    def test_url_in_query_untouched(self):
        url = 'https://tv.nrk.no/program/KOID1?ref=https://example.com/x'
        assert clean_duplicated_url(url) == url


class TestCheckUrl:
    """Tests for check_url and the error each rejection raises."""

    def test_episode_allowed(self):
        check_url('https://tv.nrk.no/serie/lindmo/2024/MUHU123', ALLOW)

    def test_radio_programme_allowed(self):
        check_url('https://radio.nrk.no/podkast/abels_taarn/l_123', ALLOW)

    def test_www_matches_normalized_allow_list(self):
        check_url('https://www.nrk.no/video/abc', ALLOW)

    @pytest.mark.parametrize('url', ['not a url', 'https://', '/relative/path', 'tv.nrk.no/program/x'])
    def test_unparseable(self, url):
        with pytest.raises(InvalidUrl):
            check_url(url, ALLOW)

    def test_http_rejected(self):
        with pytest.raises(InvalidUrl) as info:
            check_url('http://tv.nrk.no/program/KOID1', ALLOW)
        assert 'https' in info.value.message

    def test_ip_host_rejected(self):
        with pytest.raises(DomainNotAllowed):
            check_url('https://127.0.0.1/program/x', ['127.0.0.1'])

    def test_foreign_domain_rejected(self):
        with pytest.raises(DomainNotAllowed):
            check_url('https://www.youtube.com/watch?v=abc', ALLOW)

    def test_lookalike_subdomain_rejected(self):
        with pytest.raises(DomainNotAllowed):
            check_url('https://tv.nrk.no.evil.com/program/x', ALLOW)

    def test_series_page_rejected(self):
        with pytest.raises(SeriesPage):
            check_url('https://tv.nrk.no/serie/lindmo', ALLOW)
        with pytest.raises(SeriesPage):
            check_url('https://radio.nrk.no/serie/abels-taarn/', ALLOW)

    def test_front_page_rejected(self):
        with pytest.raises(NotVideoPage):
            check_url('https://www.nrk.no/', ALLOW)

    def test_article_rejected(self):
        with pytest.raises(NotVideoPage):
            check_url('https://www.nrk.no/norge/some-article-1.2345', ALLOW)

    def test_custom_allow_list(self):
        check_url('https://nrkbeta.no/2024/01/01/post/', ['nrkbeta.no'])
        with pytest.raises(DomainNotAllowed):
            check_url('https://tv.nrk.no/program/x', ['nrkbeta.no'])


class TestIsAllowedUrl:
    def test_true_for_episode(self):
        assert is_allowed_url('https://tv.nrk.no/program/KOID1', ALLOW) is True

    def test_false_for_rejections(self):
        assert is_allowed_url('https://tv.nrk.no/serie/lindmo', ALLOW) is False
        assert is_allowed_url('ftp://tv.nrk.no/x', ALLOW) is False
